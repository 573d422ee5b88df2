from __future__ import annotations

import hashlib
import json
import secrets
import threading
from dataclasses import dataclass
from urllib.request import parse_http_list, parse_keqv_list

from remotetask.logger import Logger, session_logger


@dataclass(frozen=True)
class RecordedRequest:
    method: str
    path: str
    body: str
    authorized: bool


class DigestFixtureServer:
    """Local HTTP server guarded by basic (non-qop) Digest authentication.

    Every request without a valid Authorization header gets a 401 challenge.
    With ``stale_after=N`` the nonce rotates after N authorized requests, so a
    client holding the old nonce is re-challenged. Path ``/fail`` answers 500
    once authorized.

    Usage::

        with DigestFixtureServer(username="admin", password="pw") as server:
            url = server.get_url("ISAPI/System/status")
    """

    def __init__(
        self,
        *,
        username: str,
        password: str,
        realm: str = "remotetask-fixture",
        stale_after: int | None = None,
        host: str = "127.0.0.1",
        port: int = 0,
        logger: Logger | None = None,
    ) -> None:
        self._logger = logger or session_logger
        self._username = username
        self._password = password
        self.realm = realm
        self._stale_after = stale_after
        self._host = host
        self.port = port

        self._lock = threading.Lock()
        self._nonce = secrets.token_hex(16)
        self._uses_of_nonce = 0
        self.challenges_issued = 0
        self.requests: list[RecordedRequest] = []

        self._server = None
        self._thread = None

    @property
    def nonce(self) -> str:
        with self._lock:
            return self._nonce

    def start(self) -> None:
        import http.server

        fixture = self

        class Handler(http.server.BaseHTTPRequestHandler):
            def _handle(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length).decode("utf-8") if length else ""
                status, headers, payload = fixture._respond(
                    self.command,
                    self.path,
                    self.headers.get("Authorization"),
                    body,
                )
                encoded = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                for name, value in headers.items():
                    self.send_header(name, value)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(encoded)

            do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_HEAD = _handle

            def log_message(self, format, *args):  # noqa: A002, ARG002
                # Keep test output quiet.
                pass

        class ReusableHTTPServer(http.server.ThreadingHTTPServer):
            allow_reuse_address = True
            daemon_threads = True

        self._server = ReusableHTTPServer((self._host, self.port), Handler)
        self.port = int(self._server.server_port)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        self._logger.info(
            "fixture.digest_server_started",
            host=self._host,
            port=self.port,
            realm=self.realm,
            stale_after=self._stale_after,
        )

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

        self._logger.info("fixture.digest_server_stopped", port=self.port)

    def get_url(self, path: str = "") -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self.port}"

    def _respond(
        self,
        method: str,
        path: str,
        authorization: str | None,
        body: str,
    ) -> tuple[int, dict[str, str], dict[str, object]]:
        with self._lock:
            verdict = self._check(method, authorization)
            self.requests.append(
                RecordedRequest(method=method, path=path, body=body, authorized=verdict == "ok")
            )

            if verdict != "ok":
                self.challenges_issued += 1
                challenge = f'Digest realm="{self.realm}", nonce="{self._nonce}", algorithm=MD5'
                if verdict == "stale":
                    challenge += ", stale=true"
                return 401, {"WWW-Authenticate": challenge}, {"error": "unauthorized"}

            self._uses_of_nonce += 1
            if self._stale_after is not None and self._uses_of_nonce >= self._stale_after:
                self._nonce = secrets.token_hex(16)
                self._uses_of_nonce = 0

        if path.startswith("/fail"):
            return 500, {}, {"error": "server_error"}
        return 200, {}, {"ok": True, "path": path}

    def _check(self, method: str, authorization: str | None) -> str:
        if not authorization or not authorization.startswith("Digest "):
            return "missing"

        params = parse_keqv_list(parse_http_list(authorization[len("Digest "):]))
        if params.get("username") != self._username or params.get("realm") != self.realm:
            return "rejected"

        uri = params.get("uri", "")

        def _md5(data: str) -> str:
            return hashlib.md5(data.encode("utf-8")).hexdigest()

        ha1 = _md5(f"{self._username}:{self.realm}:{self._password}")
        ha2 = _md5(f"{method}:{uri}")
        expected = _md5(f"{ha1}:{params.get('nonce', '')}:{ha2}")
        if params.get("response") != expected:
            return "rejected"
        if params.get("nonce") != self._nonce:
            return "stale"
        return "ok"

    def __enter__(self) -> "DigestFixtureServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        return None
