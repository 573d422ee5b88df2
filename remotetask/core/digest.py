"""HTTP client with reusable Digest challenge/response authentication.

The first 401 teaches the session a realm/nonce pair; later calls on the same
session attach the computed Authorization header straight away. Only the
basic (RFC 2069 style) variant is implemented: no qop, cnonce or nc.
"""

from __future__ import annotations

import asyncio
import hashlib
import ssl
from typing import Any, Callable, Mapping
from urllib.request import parse_http_list, parse_keqv_list

import httpx

from remotetask.core.models import AuthCredential, DigestChallenge, RunConfig
from remotetask.exceptions import AuthError, ConfigurationError, TransportError
from remotetask.logger import Logger, session_logger

_HASHES: dict[str, Callable[..., Any]] = {
    "MD5": hashlib.md5,
    "SHA-256": hashlib.sha256,
}

_UNAUTHORIZED = 401


def parse_challenge(values: list[str]) -> DigestChallenge:
    """Extract the Digest challenge from WWW-Authenticate header values.

    Raises AuthError when no usable Digest challenge is present.
    """
    for value in values:
        scheme, _, params = value.strip().partition(" ")
        if scheme.lower() != "digest":
            continue
        try:
            fields = parse_keqv_list(parse_http_list(params))
        except ValueError as exc:
            raise AuthError("malformed digest challenge", details={"header": value}) from exc

        realm = fields.get("realm")
        nonce = fields.get("nonce")
        if realm is None or nonce is None:
            raise AuthError("digest challenge is missing realm or nonce", details={"header": value})

        algorithm = fields.get("algorithm", "MD5").upper()
        if algorithm not in _HASHES:
            raise AuthError("unsupported digest algorithm", details={"algorithm": algorithm})

        return DigestChallenge(
            realm=realm,
            nonce=nonce,
            opaque=fields.get("opaque"),
            algorithm=algorithm,
        )

    raise AuthError("401 response carried no digest challenge", details={"www_authenticate": values})


def request_uri(url: str) -> str:
    """Path plus query of ``url``, as used in the digest ``uri`` directive."""
    return httpx.URL(url).raw_path.decode("ascii")


def compute_response(
    credential: AuthCredential,
    challenge: DigestChallenge,
    method: str,
    uri: str,
) -> str:
    hash_fn = _HASHES[challenge.algorithm]

    def _h(data: str) -> str:
        return hash_fn(data.encode("utf-8")).hexdigest()

    ha1 = _h(f"{credential.username}:{challenge.realm}:{credential.password}")
    ha2 = _h(f"{method}:{uri}")
    return _h(f"{ha1}:{challenge.nonce}:{ha2}")


def build_authorization(
    credential: AuthCredential,
    challenge: DigestChallenge,
    method: str,
    url: str,
) -> str:
    uri = request_uri(url)
    response = compute_response(credential, challenge, method, uri)
    parts = [
        f'username="{credential.username}"',
        f'realm="{challenge.realm}"',
        f'nonce="{challenge.nonce}"',
        f'uri="{uri}"',
        f'response="{response}"',
    ]
    if challenge.opaque is not None:
        parts.append(f'opaque="{challenge.opaque}"')
    parts.append(f"algorithm={challenge.algorithm}")
    return "Digest " + ", ".join(parts)


def _build_verify(verify_tls: bool, ca_bundle: str | None) -> bool | ssl.SSLContext:
    if not verify_tls:
        return False
    if ca_bundle:
        return ssl.create_default_context(cafile=ca_bundle)
    return True


class DigestSession:
    """One authenticated client whose learned challenge is reused across calls.

    Safe to share between the concurrently running A and B tasks of a cycle:
    challenge discovery happens under a lock, so a second caller waits for
    the first caller's handshake instead of repeating it.

    Example:
        async with DigestSession(timeout=30.0, user_agent="ua", credential=cred) as s:
            response = await s.send("GET", "https://device/ISAPI/System/status")
    """

    def __init__(
        self,
        *,
        timeout: float,
        user_agent: str,
        credential: AuthCredential | None = None,
        verify_tls: bool = False,
        ca_bundle: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._logger = logger or session_logger
        self._credential = credential
        self._challenge: DigestChallenge | None = None
        self._lock = asyncio.Lock()

        if credential is not None and credential.realm and credential.nonce:
            self._challenge = DigestChallenge(realm=credential.realm, nonce=credential.nonce)

        try:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                verify=_build_verify(verify_tls, ca_bundle),
                follow_redirects=True,
                headers={"User-Agent": user_agent},
                transport=transport,
            )
        except (OSError, ssl.SSLError, ValueError, TypeError) as exc:
            raise ConfigurationError(
                "failed to create HTTP client",
                details={"error": str(exc), "ca_bundle": ca_bundle, "verify_tls": verify_tls},
            ) from exc

    @classmethod
    def from_config(
        cls,
        config: RunConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> "DigestSession":
        return cls(
            timeout=config.timeout_seconds,
            user_agent=config.user_agent,
            credential=config.digest_auth,
            verify_tls=config.verify_tls,
            ca_bundle=config.ca_bundle,
            transport=transport,
            logger=logger,
        )

    @property
    def challenge(self) -> DigestChallenge | None:
        return self._challenge

    async def send(
        self,
        method: str,
        url: str,
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Perform one logical call, authenticating when challenged.

        Returns the final response (any status other than an unanswerable
        401). Raises TransportError when no response was obtained and
        AuthError when the credentials are rejected after one re-challenge.
        """
        method = method.upper()
        if self._credential is None:
            return await self._transmit(method, url, body, headers)

        challenge = self._challenge
        if challenge is not None:
            return await self._send_authorized(challenge, method, url, body, headers, rechallenge=True)

        learned = False
        async with self._lock:
            challenge = self._challenge
            if challenge is None:
                response = await self._transmit(method, url, body, headers)
                if response.status_code != _UNAUTHORIZED:
                    return response
                challenge = self._learn(response, url)
                learned = True

        # A challenge cached by a concurrent caller still earns one re-challenge.
        return await self._send_authorized(challenge, method, url, body, headers, rechallenge=not learned)

    async def _send_authorized(
        self,
        challenge: DigestChallenge,
        method: str,
        url: str,
        body: str | None,
        headers: Mapping[str, str] | None,
        *,
        rechallenge: bool,
    ) -> httpx.Response:
        assert self._credential is not None
        authorization = build_authorization(self._credential, challenge, method, url)
        response = await self._transmit(method, url, body, headers, authorization=authorization)
        if response.status_code != _UNAUTHORIZED:
            return response

        if not rechallenge:
            raise AuthError(
                "server rejected digest credentials",
                details={"method": method, "url": url, "realm": challenge.realm},
            )

        self._logger.info("digest.stale_nonce", url=url, realm=challenge.realm)
        async with self._lock:
            if self._challenge is challenge or self._challenge is None:
                self._challenge = None
                fresh = self._learn(response, url)
            else:
                # Another task already re-learned the challenge.
                fresh = self._challenge

        return await self._send_authorized(fresh, method, url, body, headers, rechallenge=False)

    def _learn(self, response: httpx.Response, url: str) -> DigestChallenge:
        challenge = parse_challenge(response.headers.get_list("www-authenticate"))
        self._challenge = challenge
        self._logger.debug(
            "digest.challenge_learned",
            url=url,
            realm=challenge.realm,
            algorithm=challenge.algorithm,
        )
        return challenge

    async def _transmit(
        self,
        method: str,
        url: str,
        body: str | None,
        headers: Mapping[str, str] | None,
        *,
        authorization: str | None = None,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        if body is not None and not any(name.lower() == "content-type" for name in request_headers):
            request_headers["Content-Type"] = "application/json"
        if authorization is not None:
            request_headers["Authorization"] = authorization

        try:
            return await self._http.request(method, url, content=body, headers=request_headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(
                f"{method} {url} failed: {exc}",
                details={"method": method, "url": url, "error_type": type(exc).__name__},
                cause=exc,
            ) from exc

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "DigestSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
