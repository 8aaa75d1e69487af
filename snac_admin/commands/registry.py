"""Allowlisted snac commands and their positional argument schemas.

Every command receives the basedir as its first positional argument; the
schemas below describe only what follows it. Keep this table tight: it is
the complete set of operations the gateway will ever spawn.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from snac_admin.kernel.errors import CommandNotAllowed

URL_MAX_LEN = 2048
NAME_MAX_LEN = 256


class ArgKind(str, enum.Enum):
    IDENTIFIER = "identifier"
    URL = "url"
    FREETEXT = "freetext"


@dataclass(frozen=True)
class ArgSpec:
    name: str
    kind: ArgKind
    required: bool = True
    max_len: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.kind.value,
            "required": self.required,
            "maxLen": self.max_len,
        }


@dataclass(frozen=True)
class CommandSpec:
    name: str
    label: str
    args: tuple[ArgSpec, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "args": [arg.to_dict() for arg in self.args],
        }


def _uid(required: bool = True) -> ArgSpec:
    return ArgSpec("uid", ArgKind.IDENTIFIER, required=required)


def _url(name: str) -> ArgSpec:
    return ArgSpec(name, ArgKind.URL, max_len=URL_MAX_LEN)


def _text(name: str, max_len: int = URL_MAX_LEN) -> ArgSpec:
    return ArgSpec(name, ArgKind.FREETEXT, max_len=max_len)


_SPECS: tuple[CommandSpec, ...] = (
    CommandSpec("state", "Server state"),
    CommandSpec("upgrade", "Upgrade storage layout"),
    CommandSpec("purge", "Purge old data"),
    CommandSpec("webfinger", "Resolve @user@host (or actor URL) via WebFinger", (_text("account"),)),
    CommandSpec("actor", "Fetch actor JSON (optional uid for signed fetch)", (_uid(required=False), _url("url"))),
    CommandSpec("adduser", "Add user (prints password)", (_uid(),)),
    CommandSpec("resetpwd", "Reset user password (prints new one)", (_uid(),)),
    CommandSpec("deluser", "Delete user", (_uid(),)),
    CommandSpec("update", "Send user's updated profile to following instances", (_uid(),)),
    CommandSpec("verify_links", 'Verify user links (rel="me")', (_uid(),)),
    CommandSpec("webfinger_s", "Signed WebFinger (requires uid)", (_uid(), _text("account"))),
    CommandSpec("request", "Fetch ActivityPub object JSON (signed, requires uid)", (_uid(), _url("url"))),
    CommandSpec("insert", "Fetch object and insert into user timeline", (_uid(), _url("url"))),
    CommandSpec("collect_replies", "Collect all replies from a post (enqueue job)", (_uid(), _url("url"))),
    CommandSpec("follow", "Follow an actor URL", (_uid(), _text("actor"))),
    CommandSpec("unfollow", "Unfollow an actor URL", (_uid(), _text("actor"))),
    CommandSpec("muted", "List muted actors for user", (_uid(),)),
    CommandSpec("unmute", "Unmute an actor URL", (_uid(), _text("actor"))),
    CommandSpec("limit", "Limit an actor (drops their announces; must be followed)", (_uid(), _text("actor"))),
    CommandSpec("unlimit", "Remove limit from an actor", (_uid(), _text("actor"))),
    CommandSpec("ping", "Ping an actor (actor URL or @user@host)", (_uid(), _text("actor_or_account"))),
    CommandSpec("search", "Search posts by content (regex)", (_uid(), _text("regex"))),
    CommandSpec("pin", "Pin a post URL", (_uid(), _url("msg_url"))),
    CommandSpec("unpin", "Unpin a post URL", (_uid(), _url("msg_url"))),
    CommandSpec("bookmark", "Bookmark a post URL", (_uid(), _url("msg_url"))),
    CommandSpec("unbookmark", "Remove bookmark for a post URL", (_uid(), _url("msg_url"))),
    CommandSpec("lists", "List user lists", (_uid(),)),
    CommandSpec("list_members", "List members in a list", (_uid(), _text("name", NAME_MAX_LEN))),
    CommandSpec("list_create", "Create a new list", (_uid(), _text("name", NAME_MAX_LEN))),
    CommandSpec("list_remove", "Remove a list", (_uid(), _text("name", NAME_MAX_LEN))),
    CommandSpec(
        "list_add",
        "Add account to list (@user@host or actor URL)",
        (_uid(), _text("name", NAME_MAX_LEN), _text("account")),
    ),
    CommandSpec(
        "list_del",
        "Delete actor URL from list",
        (_uid(), _text("name", NAME_MAX_LEN), _text("actor")),
    ),
    CommandSpec("block", "Block instance (URL or domain)", (_text("instance_url"),)),
    CommandSpec("unblock", "Unblock instance (URL or domain)", (_text("instance_url"),)),
)

COMMANDS: Mapping[str, CommandSpec] = MappingProxyType({spec.name: spec for spec in _SPECS})


def get_command(name: Any) -> CommandSpec:
    if not isinstance(name, str):
        raise CommandNotAllowed("Command not allowed")
    spec = COMMANDS.get(name)
    if spec is None:
        raise CommandNotAllowed("Command not allowed")
    return spec


def describe_commands() -> list[dict[str, Any]]:
    return [spec.to_dict() for spec in COMMANDS.values()]
