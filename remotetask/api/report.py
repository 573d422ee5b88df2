from __future__ import annotations

from dataclasses import asdict
from typing import Any

from remotetask.core.models import RequestTemplate, RunConfig, RunResult


def _request_payload(request: RequestTemplate) -> dict[str, Any]:
    return {
        "method": request.method,
        "url": request.url,
        "headers": sorted(request.headers),
        "has_body": request.body is not None,
    }


def build_run_report(config: RunConfig, result: RunResult) -> dict[str, Any]:
    """JSON-ready summary of a run. Credentials and bodies are left out."""
    config_payload = {
        "request_a": _request_payload(config.request_a),
        "request_b": _request_payload(config.request_b),
        "delay_between_a_and_b_ms": config.delay_between_a_and_b_ms,
        "delay_between_a_requests_ms": config.delay_between_a_requests_ms,
        "max_requests": config.max_requests,
        "digest_auth": config.digest_auth is not None,
        "generated_fields": [
            {"name": spec.name, "generator": spec.generator, "target": spec.target.value}
            for spec in config.generated_fields
        ],
        "session_scope": config.session_scope.value,
        "cancel_mode": config.cancel_mode.value,
        "timeout_seconds": config.timeout_seconds,
    }
    return {
        "config": config_payload,
        "result": {
            "stop_reason": result.stop_reason.value,
            "cycles": result.cycles,
            "duration_seconds": result.duration_seconds,
            "throughput_rps": result.throughput_rps,
            "stats": asdict(result.stats),
        },
        "metrics": result.metrics_report,
    }
