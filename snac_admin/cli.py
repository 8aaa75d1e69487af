from __future__ import annotations

import argparse
import json
import sys

from snac_admin.commands.registry import describe_commands
from snac_admin.kernel.config import load_settings
from snac_admin.kernel.errors import ConfigError

EXIT_CONFIG_ERROR = 2


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from snac_admin.facade import create_facade
    from snac_admin.web.api import get_app

    settings = load_settings()
    host = args.host or settings.host
    port = int(args.port or settings.port)
    facade = create_facade(settings)
    facade.logger.event(
        event="gateway.start",
        host=host,
        port=port,
        basedir=str(settings.basedir),
        executable=settings.executable,
    )
    app = get_app(facade=facade)
    uvicorn.run(app, host=host, port=port, log_level=args.log_level)
    return 0


def cmd_commands(args: argparse.Namespace) -> int:
    _print_json({"ok": True, "commands": describe_commands()})
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    settings = load_settings()
    _print_json({"ok": True, "settings": settings.public_summary()})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="snac-admin")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the admin web gateway")
    serve.add_argument("--host", default="")
    serve.add_argument("--port", type=int, default=0)
    serve.add_argument("--log-level", default="info")
    serve.set_defaults(func=cmd_serve)

    listing = sub.add_parser("commands", help="print the command allowlist")
    listing.set_defaults(func=cmd_commands)

    check = sub.add_parser("check", help="validate settings and print the resolved values")
    check.set_defaults(func=cmd_check)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args))
    except ConfigError as exc:
        _print_json({"ok": False, "error": str(exc)})
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
