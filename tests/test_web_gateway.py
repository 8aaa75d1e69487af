import asyncio
import json
import os
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from snac_admin.facade import create_facade
from snac_admin.kernel.config import SESSION_COOKIE_NAME, load_settings
from snac_admin.runtime.supervisor import RunResult
from snac_admin.web.api import BodyLimitMiddleware, get_app
from tests._support import GatewaySandbox, posix_only

PASSWORD = "correct horse"


class RecordingSupervisor:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []

    async def run(self, command, args):
        self.calls.append((command, list(args)))
        return RunResult(argv=(command, "/basedir", *args), code=0, signal=None, stdout="ok\n", stderr="")


class GatewayTestCase(unittest.TestCase):
    env_overrides: dict[str, str] = {}

    def setUp(self) -> None:
        self.sandbox = GatewaySandbox()
        self.addCleanup(self.sandbox.cleanup)
        self.settings = load_settings(self.sandbox.environ(**self.env_overrides))

    def client_for(self, **facade_kwargs) -> TestClient:
        facade = create_facade(self.settings, **facade_kwargs)
        self.facade = facade
        return TestClient(get_app(facade=facade))

    def login(self, client: TestClient, password: str = PASSWORD, user: str = "admin"):
        return client.post("/login", data={"user": user, "pass": password}, follow_redirects=False)


class AuthFlowTests(GatewayTestCase):
    def test_health_is_public(self) -> None:
        client = self.client_for()
        response = client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})

    def test_unauthenticated_page_redirects_and_api_401s(self) -> None:
        client = self.client_for()
        page = client.get("/", follow_redirects=False)
        self.assertEqual(page.status_code, 302)
        self.assertEqual(page.headers["location"], "/login")
        api = client.get("/api/commands")
        self.assertEqual(api.status_code, 401)
        self.assertEqual(api.json(), {"ok": False, "error": "Not authenticated"})
        run = client.post("/api/run", json={"command": "state"})
        self.assertEqual(run.status_code, 401)

    def test_login_page_renders(self) -> None:
        response = self.client_for().get("/login")
        self.assertEqual(response.status_code, 200)
        self.assertIn('action="/login"', response.text)

    def test_wrong_password_and_wrong_user_look_identical(self) -> None:
        client = self.client_for()
        bad_pass = self.login(client, password="nope")
        bad_user = self.login(client, user="root")
        for response in (bad_pass, bad_user):
            self.assertEqual(response.status_code, 401)
            self.assertNotIn("set-cookie", response.headers)
        self.assertEqual(bad_pass.text, bad_user.text)
        self.assertEqual(client.get("/api/commands").status_code, 401)

    def test_login_sets_hardened_cookie_and_unlocks_api(self) -> None:
        client = self.client_for()
        response = self.login(client)
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/")
        cookie = response.headers["set-cookie"]
        self.assertTrue(cookie.startswith(f"{SESSION_COOKIE_NAME}="))
        self.assertIn("HttpOnly", cookie)
        self.assertIn("samesite=strict", cookie.lower())
        self.assertIn("Path=/", cookie)
        self.assertNotIn("Secure", cookie)

        listing = client.get("/api/commands")
        self.assertEqual(listing.status_code, 200)
        body = listing.json()
        self.assertEqual(body["basedir"], str(self.settings.basedir))
        self.assertEqual(body["executablePath"], str(self.sandbox.executable))
        names = [c["name"] for c in body["commands"]]
        self.assertIn("state", names)
        self.assertIn("list_del", names)

    def test_json_login(self) -> None:
        client = self.client_for()
        response = client.post("/login", json={"user": "admin", "pass": PASSWORD})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})
        self.assertEqual(client.get("/api/commands").status_code, 200)
        failed = client.post("/login", json={"user": "admin", "pass": 123})
        self.assertEqual(failed.status_code, 401)

    def test_logged_in_user_skips_login_page(self) -> None:
        client = self.client_for()
        self.login(client)
        response = client.get("/login", follow_redirects=False)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers["location"], "/")

    def test_logout_clears_cookie(self) -> None:
        client = self.client_for()
        self.login(client)
        response = client.get("/logout", follow_redirects=False)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers["location"], "/login")
        self.assertIn(f"{SESSION_COOKIE_NAME}=", response.headers["set-cookie"])
        self.assertIn("Max-Age=0", response.headers["set-cookie"])

    def test_expired_or_foreign_token_rejected(self) -> None:
        client = self.client_for()
        client.cookies.set(SESSION_COOKIE_NAME, self.facade.codec.issue("admin", ttl_ms=-1))
        self.assertEqual(client.get("/api/commands").status_code, 401)
        other = self.client_for()
        other.cookies.set(SESSION_COOKIE_NAME, self.facade.codec.issue("mallory"))
        self.assertEqual(other.get("/api/commands").status_code, 401)

    def test_static_ui_served_with_security_headers(self) -> None:
        client = self.client_for()
        self.login(client)
        page = client.get("/")
        self.assertEqual(page.status_code, 200)
        self.assertIn("/app.js", page.text)
        self.assertIn("script-src 'self'", page.headers["content-security-policy"])
        self.assertEqual(page.headers["x-frame-options"], "DENY")
        self.assertEqual(client.get("/app.js").status_code, 200)

    def test_login_events_logged_without_secrets(self) -> None:
        client = self.client_for()
        self.login(client, password="nope")
        self.login(client)
        lines = (self.sandbox.log_dir / "gateway.jsonl").read_text(encoding="utf-8").splitlines()
        events = [json.loads(line) for line in lines]
        outcomes = [e["outcome"] for e in events if e["event"] == "auth.login"]
        self.assertEqual(outcomes, ["failed", "ok"])
        self.assertNotIn(PASSWORD, "\n".join(lines))


class RunEndpointTests(GatewayTestCase):
    def test_unknown_command_rejected_before_validation(self) -> None:
        supervisor = RecordingSupervisor()
        client = self.client_for(supervisor=supervisor)
        self.login(client)
        for command in ("rm", None, 5, ["state"]):
            response = client.post("/api/run", json={"command": command, "args": {"uid": "../etc"}})
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json(), {"ok": False, "error": "Command not allowed"})
        self.assertEqual(supervisor.calls, [])

    def test_missing_required_argument_never_spawns(self) -> None:
        supervisor = RecordingSupervisor()
        client = self.client_for(supervisor=supervisor)
        self.login(client)
        response = client.post("/api/run", json={"command": "adduser", "args": {}})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"ok": False, "error": "Missing uid"})
        response = client.post("/api/run", json={"command": "adduser", "args": {"uid": "-rf"}})
        self.assertEqual(response.json()["error"], "uid must match [A-Za-z0-9_]+")
        self.assertEqual(supervisor.calls, [])

    def test_nul_byte_argument_is_400(self) -> None:
        supervisor = RecordingSupervisor()
        client = self.client_for(supervisor=supervisor)
        self.login(client)
        response = client.post(
            "/api/run", json={"command": "search", "args": {"uid": "walter", "regex": "a\x00b"}}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"ok": False, "error": "regex must not contain NUL bytes"})
        self.assertEqual(supervisor.calls, [])

    def test_malformed_bodies_are_400(self) -> None:
        client = self.client_for(supervisor=RecordingSupervisor())
        self.login(client)
        broken = client.post(
            "/api/run", content=b"{not json", headers={"content-type": "application/json"}
        )
        self.assertEqual(broken.status_code, 400)
        self.assertEqual(broken.json()["error"], "Invalid request body")
        listed = client.post("/api/run", json=["state"])
        self.assertEqual(listed.status_code, 400)
        bad_args = client.post("/api/run", json={"command": "adduser", "args": ["walter"]})
        self.assertEqual(bad_args.json()["error"], "args must be an object")

    def test_validated_args_reach_supervisor_in_order(self) -> None:
        supervisor = RecordingSupervisor()
        client = self.client_for(supervisor=supervisor)
        self.login(client)
        response = client.post(
            "/api/run",
            json={"command": "actor", "args": {"url": " https://example.com/u/x ", "uid": ""}},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(supervisor.calls, [("actor", ["https://example.com/u/x"])])

    @unittest.skipUnless(posix_only(), "fake executable relies on a POSIX shebang")
    def test_state_end_to_end(self) -> None:
        client = self.client_for()
        self.login(client)
        response = client.post("/api/run", json={"command": "state"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["command"], "state")
        self.assertEqual(body["argv"], ["state", str(self.settings.basedir)])
        self.assertEqual(body["code"], 0)
        self.assertIsNone(body["signal"])
        self.assertEqual(json.loads(body["stdout"].splitlines()[0])["argv"], body["argv"])
        self.assertEqual(body["stderr"], "")

    @unittest.skipUnless(posix_only(), "fake executable relies on a POSIX shebang")
    def test_execution_failure_is_200_with_ok_false(self) -> None:
        client = self.client_for()
        self.login(client)
        with mock.patch.dict(os.environ, {"FAKE_SNAC_MODE": "fail"}):
            response = client.post("/api/run", json={"command": "adduser", "args": {"uid": "walter"}})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["code"], 3)
        self.assertIn("boom", body["stderr"])


class ConcurrencyCeilingTests(GatewayTestCase):
    env_overrides = {"ADMIN_MAX_CONCURRENT_RUNS": "1"}

    def test_saturated_slots_answer_429_without_spawning(self) -> None:
        supervisor = RecordingSupervisor()
        client = self.client_for(supervisor=supervisor)
        self.login(client)
        self.assertTrue(self.facade.run_slots.try_acquire())
        response = client.post("/api/run", json={"command": "state"})
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["error"], "Too many concurrent runs")
        self.assertEqual(supervisor.calls, [])
        self.facade.run_slots.release()
        self.assertEqual(client.post("/api/run", json={"command": "state"}).status_code, 200)
        self.assertEqual(self.facade.run_slots.active, 0)


class RateLimitTests(GatewayTestCase):
    env_overrides = {"ADMIN_RATE_LIMIT": "3"}

    def test_requests_over_limit_get_429(self) -> None:
        client = self.client_for()
        statuses = [client.get("/health").status_code for _ in range(4)]
        self.assertEqual(statuses, [200, 200, 200, 429])
        limited = client.get("/health")
        self.assertEqual(limited.json(), {"ok": False, "error": "Too many requests"})
        self.assertIn("retry-after", limited.headers)


class BodyLimitTests(GatewayTestCase):
    def test_oversized_body_rejected(self) -> None:
        client = self.client_for(supervisor=RecordingSupervisor())
        self.login(client)
        response = client.post(
            "/api/run",
            json={"command": "search", "args": {"uid": "walter", "regex": "x" * (70 * 1024)}},
        )
        self.assertEqual(response.status_code, 413)

    def test_chunked_body_without_length_is_counted(self) -> None:
        supervisor = RecordingSupervisor()
        client = self.client_for(supervisor=supervisor)
        self.login(client)

        def chunks():
            yield b'{"command": "search", "args": {"uid": "walter", "regex": "'
            for _ in range(32):
                yield b"x" * (64 * 1024)
            yield b'"}}'

        response = client.post("/api/run", content=chunks(), headers={"content-type": "application/json"})
        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.json(), {"ok": False, "error": "Request body too large"})
        self.assertEqual(supervisor.calls, [])

    def test_small_chunked_body_reaches_route(self) -> None:
        supervisor = RecordingSupervisor()
        client = self.client_for(supervisor=supervisor)
        self.login(client)

        def chunks():
            yield b'{"command": "search", '
            yield b'"args": {"uid": "walter", "regex": "^a"}}'

        response = client.post("/api/run", content=chunks(), headers={"content-type": "application/json"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(supervisor.calls, [("search", ["walter", "^a"])])


class BodyLimitMiddlewareTests(unittest.TestCase):
    def _drive(self, messages: list[dict], max_bytes: int = 10):
        seen: list[bytes] = []
        sent: list[dict] = []

        async def app(scope, receive, send):
            while True:
                message = await receive()
                seen.append(message.get("body", b""))
                if not message.get("more_body", False):
                    break
            await send({"type": "http.response.start", "status": 204, "headers": []})
            await send({"type": "http.response.body", "body": b""})

        pending = list(messages)

        async def receive():
            return pending.pop(0)

        async def send(message):
            sent.append(message)

        scope = {"type": "http", "method": "POST", "path": "/api/run", "headers": []}
        asyncio.run(BodyLimitMiddleware(app, max_bytes=max_bytes)(scope, receive, send))
        return seen, sent[0]["status"], pending

    def test_stream_cut_off_once_cap_crossed(self) -> None:
        messages = [
            {"type": "http.request", "body": b"12345", "more_body": True},
            {"type": "http.request", "body": b"678901", "more_body": True},
            {"type": "http.request", "body": b"never read", "more_body": False},
        ]
        seen, status, pending = self._drive(messages)
        self.assertEqual(status, 413)
        self.assertEqual(seen, [])
        self.assertEqual(len(pending), 1)

    def test_stream_within_cap_replayed_in_order(self) -> None:
        messages = [
            {"type": "http.request", "body": b"12345", "more_body": True},
            {"type": "http.request", "body": b"67890", "more_body": False},
        ]
        seen, status, _pending = self._drive(messages)
        self.assertEqual(status, 204)
        self.assertEqual(seen, [b"12345", b"67890"])


if __name__ == "__main__":
    unittest.main()
