"""Tests for DigestSession challenge discovery, reuse and re-challenge."""

from __future__ import annotations

import asyncio
import hashlib
from urllib.request import parse_http_list, parse_keqv_list

import httpx
import pytest

from remotetask.core.digest import (
    DigestSession,
    build_authorization,
    compute_response,
    parse_challenge,
    request_uri,
)
from remotetask.core.models import AuthCredential, DigestChallenge
from remotetask.exceptions import AuthError, ConfigurationError, TransportError

USER = "admin"
PASSWORD = "pw"
REALM = "device"


def _md5(data: str) -> str:
    return hashlib.md5(data.encode("utf-8")).hexdigest()


class FakeDigestServer:
    """MockTransport handler that enforces basic MD5 digest auth."""

    def __init__(self, *, rotate_after_success: bool = False, always_reject: bool = False):
        self.nonce = "nonce-1"
        self.rotate_after_success = rotate_after_success
        self.always_reject = always_reject
        self.requests: list[httpx.Request] = []
        self.unauthenticated = 0

    def _challenge(self) -> httpx.Response:
        return httpx.Response(
            401,
            headers={"WWW-Authenticate": f'Digest realm="{REALM}", nonce="{self.nonce}", algorithm=MD5'},
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        header = request.headers.get("Authorization")
        if header is None:
            self.unauthenticated += 1
            return self._challenge()
        if self.always_reject:
            return self._challenge()

        params = parse_keqv_list(parse_http_list(header[len("Digest "):]))
        ha1 = _md5(f"{USER}:{REALM}:{PASSWORD}")
        ha2 = _md5(f"{request.method}:{params['uri']}")
        if params["nonce"] != self.nonce or params["response"] != _md5(f"{ha1}:{params['nonce']}:{ha2}"):
            return self._challenge()

        if self.rotate_after_success:
            self.nonce = f"{self.nonce}-next"
        return httpx.Response(200, json={"ok": True})


def _session(handler, credential=None) -> DigestSession:
    return DigestSession(
        timeout=5.0,
        user_agent="test-agent",
        credential=credential,
        transport=httpx.MockTransport(handler),
    )


class TestParseChallenge:
    def test_parses_realm_nonce_opaque(self):
        challenge = parse_challenge(['Digest realm="r", nonce="n", opaque="o", algorithm=MD5'])
        assert challenge == DigestChallenge(realm="r", nonce="n", opaque="o", algorithm="MD5")

    def test_defaults_to_md5(self):
        assert parse_challenge(['Digest realm="r", nonce="n"']).algorithm == "MD5"

    def test_skips_non_digest_schemes(self):
        challenge = parse_challenge(['Basic realm="b"', 'Digest realm="r", nonce="n"'])
        assert challenge.realm == "r"

    def test_missing_nonce_raises(self):
        with pytest.raises(AuthError):
            parse_challenge(['Digest realm="r"'])

    def test_unsupported_algorithm_raises(self):
        with pytest.raises(AuthError):
            parse_challenge(['Digest realm="r", nonce="n", algorithm=SHA-512-256'])

    def test_no_digest_challenge_raises(self):
        with pytest.raises(AuthError):
            parse_challenge(['Basic realm="b"'])


class TestAuthorizationHeader:
    def test_request_uri_keeps_query(self):
        assert request_uri("https://h/ISAPI/AddTask?format=json") == "/ISAPI/AddTask?format=json"

    def test_response_matches_rfc2069_formula(self):
        credential = AuthCredential(username=USER, password=PASSWORD)
        challenge = DigestChallenge(realm=REALM, nonce="abc")
        expected = _md5(f"{_md5(f'{USER}:{REALM}:{PASSWORD}')}:abc:{_md5('GET:/x')}")
        assert compute_response(credential, challenge, "GET", "/x") == expected

    def test_header_carries_opaque_and_algorithm(self):
        credential = AuthCredential(username=USER, password=PASSWORD)
        challenge = DigestChallenge(realm=REALM, nonce="abc", opaque="op")
        header = build_authorization(credential, challenge, "GET", "http://h/x")
        assert header.startswith('Digest username="admin"')
        assert 'uri="/x"' in header
        assert 'opaque="op"' in header
        assert header.endswith("algorithm=MD5")


class TestDigestSession:
    @pytest.mark.asyncio
    async def test_without_credential_request_is_sent_as_is(self):
        server = FakeDigestServer()
        async with _session(server) as session:
            response = await session.send("get", "http://h/x")

        assert response.status_code == 401
        assert len(server.requests) == 1
        assert "Authorization" not in server.requests[0].headers

    @pytest.mark.asyncio
    async def test_challenge_learned_once_and_reused(self):
        server = FakeDigestServer()
        credential = AuthCredential(username=USER, password=PASSWORD)
        async with _session(server, credential) as session:
            first = await session.send("POST", "http://h/a", body="{}")
            second = await session.send("PUT", "http://h/b", body="{}")

        assert first.status_code == 200
        assert second.status_code == 200
        assert server.unauthenticated == 1
        # 401 + authorized A, then authorized B straight away.
        assert len(server.requests) == 3
        assert session.challenge == DigestChallenge(realm=REALM, nonce="nonce-1")

    @pytest.mark.asyncio
    async def test_body_gets_json_content_type(self):
        server = FakeDigestServer()
        async with _session(server, AuthCredential(username=USER, password=PASSWORD)) as session:
            await session.send("POST", "http://h/a", body='{"k": 1}')

        final = server.requests[-1]
        assert final.headers["Content-Type"] == "application/json"
        assert final.content == b'{"k": 1}'
        assert final.headers["User-Agent"] == "test-agent"

    @pytest.mark.asyncio
    async def test_rejected_credentials_raise_auth_error(self):
        server = FakeDigestServer(always_reject=True)
        async with _session(server, AuthCredential(username=USER, password="wrong")) as session:
            with pytest.raises(AuthError):
                await session.send("GET", "http://h/x")

        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_stale_nonce_is_rechallenged_once(self):
        server = FakeDigestServer(rotate_after_success=True)
        credential = AuthCredential(username=USER, password=PASSWORD)
        async with _session(server, credential) as session:
            await session.send("GET", "http://h/a")
            assert len(server.requests) == 2

            response = await session.send("GET", "http://h/b")

        assert response.status_code == 200
        # Old nonce rejected, fresh challenge taken from that 401, resend accepted.
        assert len(server.requests) == 4
        assert server.unauthenticated == 1
        assert session.challenge.nonce == "nonce-1-next"

    @pytest.mark.asyncio
    async def test_concurrent_callers_discover_challenge_once(self):
        server = FakeDigestServer()
        credential = AuthCredential(username=USER, password=PASSWORD)
        async with _session(server, credential) as session:
            responses = await asyncio.gather(
                session.send("POST", "http://h/a", body="{}"),
                session.send("PUT", "http://h/b", body="{}"),
            )

        assert [r.status_code for r in responses] == [200, 200]
        assert server.unauthenticated == 1

    @pytest.mark.asyncio
    async def test_preseeded_challenge_skips_discovery(self):
        server = FakeDigestServer()
        credential = AuthCredential(username=USER, password=PASSWORD, realm=REALM, nonce="nonce-1")
        async with _session(server, credential) as session:
            response = await session.send("GET", "http://h/x")

        assert response.status_code == 200
        assert server.unauthenticated == 0
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_network_failure_wrapped_in_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _session(handler) as session:
            with pytest.raises(TransportError) as exc_info:
                await session.send("GET", "http://h/x")

        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        assert exc_info.value.code == "TRANSPORT"

    def test_unreadable_ca_bundle_raises_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            DigestSession(
                timeout=1.0,
                user_agent="ua",
                verify_tls=True,
                ca_bundle=str(tmp_path / "missing.pem"),
            )
