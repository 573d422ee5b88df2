from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

from remotetask.core.models import (
    AuthCredential,
    CancelMode,
    FieldSpec,
    FieldTarget,
    RequestTemplate,
    RunConfig,
    SessionScope,
)
from remotetask.exceptions import ConfigurationError

ENV_PREFIX = "REMOTETASK"


def load_run_config(path: str) -> RunConfig:
    """Load a run configuration from a JSON file.

    Expected shape:
      {
        "request_a": {"method": "POST", "url": "https://...", "headers": {...}, "body": "...{taskID}..."},
        "request_b": {"method": "PUT", "url": "https://...", "body": "..."},
        "delay_between_a_and_b_ms": 500,
        "delay_between_a_requests_ms": 3000,
        "max_requests": 1,
        "digest_auth": {"username": "admin", "password": "...", "realm": null, "nonce": null},
        "generated_fields": [{"name": "taskID", "generator": "uuid", "field_type": "body"}],
        "session_scope": "per_cycle",
        "cancel_mode": "drain"
      }

    Only request_a and request_b are required.
    """
    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError("cannot read config file", details={"path": path, "error": str(exc)}) from exc
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigurationError("config file is not valid JSON", details={"path": path, "error": str(exc)}) from exc

    if not isinstance(data, dict):
        raise ConfigurationError("config file must contain a JSON object", details={"path": path})
    return parse_run_config(data)


def parse_run_config(data: Mapping[str, Any]) -> RunConfig:
    generated = data.get("generated_fields") or []
    if not isinstance(generated, list):
        raise ConfigurationError("'generated_fields' must be a list", details={"key": "generated_fields"})

    digest_raw = data.get("digest_auth")
    return RunConfig(
        request_a=_parse_request(data.get("request_a"), "request_a"),
        request_b=_parse_request(data.get("request_b"), "request_b"),
        delay_between_a_and_b_ms=_parse_int(data, "delay_between_a_and_b_ms", 100),
        delay_between_a_requests_ms=_parse_int(data, "delay_between_a_requests_ms", 1000),
        max_requests=_parse_optional_int(data, "max_requests"),
        digest_auth=_parse_credential(digest_raw) if digest_raw is not None else None,
        generated_fields=tuple(_parse_field(raw, i) for i, raw in enumerate(generated)),
        session_scope=_parse_enum(SessionScope, data, "session_scope", SessionScope.PER_CYCLE),
        cancel_mode=_parse_enum(CancelMode, data, "cancel_mode", CancelMode.DRAIN),
        timeout_seconds=_parse_timeout(data),
        user_agent=_parse_str(data, "user_agent", "RemoteTask-HTTP-Client/1.0"),
        verify_tls=_parse_bool(data, "verify_tls", False),
        ca_bundle=_parse_optional_str(data, "ca_bundle"),
    )


def credential_from_env(
    base: AuthCredential | None = None,
    prefix: str = ENV_PREFIX,
) -> AuthCredential | None:
    """Overlay digest credentials from the environment.

    Reads {PREFIX}_DIGEST_USERNAME and {PREFIX}_DIGEST_PASSWORD; blank values
    are ignored. Returns ``base`` untouched when neither is set.
    """
    username = (os.environ.get(f"{prefix}_DIGEST_USERNAME") or "").strip()
    password = os.environ.get(f"{prefix}_DIGEST_PASSWORD") or ""

    if not username and not password:
        return base
    if base is None:
        if not username:
            raise ConfigurationError(
                "digest password given without a username",
                details={"env": f"{prefix}_DIGEST_USERNAME"},
            )
        return AuthCredential(username=username, password=password)

    return AuthCredential(
        username=username or base.username,
        password=password or base.password,
        realm=base.realm,
        nonce=base.nonce,
    )


def _parse_request(raw: Any, key: str) -> RequestTemplate:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{key!r} must be an object", details={"key": key})

    method = raw.get("method")
    url = raw.get("url")
    if not isinstance(method, str) or not method.strip():
        raise ConfigurationError(f"{key}.method must be a non-empty string", details={"key": f"{key}.method"})
    if not isinstance(url, str) or not url.strip():
        raise ConfigurationError(f"{key}.url must be a non-empty string", details={"key": f"{key}.url"})

    headers = raw.get("headers") or {}
    if not isinstance(headers, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
    ):
        raise ConfigurationError(f"{key}.headers must map strings to strings", details={"key": f"{key}.headers"})

    body = raw.get("body")
    if body is not None and not isinstance(body, str):
        raise ConfigurationError(f"{key}.body must be a string or null", details={"key": f"{key}.body"})

    return RequestTemplate(method=method.strip().upper(), url=url.strip(), headers=dict(headers), body=body)


def _parse_credential(raw: Any) -> AuthCredential:
    if not isinstance(raw, dict):
        raise ConfigurationError("'digest_auth' must be an object or null", details={"key": "digest_auth"})
    username = raw.get("username")
    password = raw.get("password")
    if not isinstance(username, str) or not isinstance(password, str):
        raise ConfigurationError(
            "digest_auth.username and digest_auth.password must be strings",
            details={"key": "digest_auth"},
        )
    return AuthCredential(
        username=username,
        password=password,
        realm=raw.get("realm"),
        nonce=raw.get("nonce"),
    )


def _parse_field(raw: Any, index: int) -> FieldSpec:
    key = f"generated_fields[{index}]"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{key} must be an object", details={"key": key})

    name = raw.get("name")
    generator = raw.get("generator")
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"{key}.name must be a non-empty string", details={"key": key})
    if not isinstance(generator, str):
        raise ConfigurationError(f"{key}.generator must be a string", details={"key": key})

    # Anything that is not explicitly "body" lands in the headers.
    target_raw = raw.get("target", raw.get("field_type", FieldTarget.HEADER.value))
    target = FieldTarget.BODY if target_raw == FieldTarget.BODY.value else FieldTarget.HEADER

    value = raw.get("value")
    return FieldSpec(name=name, generator=generator, target=target, value=None if value is None else str(value))


def _parse_int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"{key!r} must be a non-negative integer", details={"key": key, "value": value})
    return value


def _parse_optional_int(data: Mapping[str, Any], key: str) -> int | None:
    if data.get(key) is None:
        return None
    return _parse_int(data, key, 0)


def _parse_enum(enum_cls, data: Mapping[str, Any], key: str, default):
    raw = data.get(key)
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError as exc:
        allowed = [member.value for member in enum_cls]
        raise ConfigurationError(f"{key!r} must be one of {allowed}", details={"key": key, "value": raw}) from exc


def _parse_timeout(data: Mapping[str, Any]) -> float:
    value = data.get("timeout_seconds", 30.0)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(
            "'timeout_seconds' must be a positive number",
            details={"key": "timeout_seconds", "value": value},
        )
    return float(value)


def _parse_bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key!r} must be true or false", details={"key": key, "value": value})
    return value


def _parse_str(data: Mapping[str, Any], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{key!r} must be a non-empty string", details={"key": key, "value": value})
    return value


def _parse_optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigurationError(f"{key!r} must be a string or null", details={"key": key, "value": value})
    return value
