"""End-to-end runs against the local Digest fixture server.

Real sockets and real (short) sleeps; no mocks.
"""

from __future__ import annotations

import json

import pytest

from remotetask.core.models import (
    AuthCredential,
    FieldSpec,
    FieldTarget,
    RequestTemplate,
    RunConfig,
    SessionScope,
    StopReason,
)
from remotetask.core.scheduler import Scheduler


def _config(server, *, password="s3cret-pass", b_path="tasks/delete", **overrides) -> RunConfig:
    values = dict(
        request_a=RequestTemplate(method="POST", url=server.get_url("tasks?format=json"), body='{"taskID":"{taskID}"}'),
        request_b=RequestTemplate(method="PUT", url=server.get_url(b_path), body='{"taskID":"{taskID}"}'),
        delay_between_a_and_b_ms=200,
        delay_between_a_requests_ms=300,
        max_requests=2,
        digest_auth=AuthCredential(username="admin", password=password),
        generated_fields=(FieldSpec(name="taskID", generator="uuid", target=FieldTarget.BODY),),
    )
    values.update(overrides)
    return RunConfig(**values)


class TestDigestRuns:
    @pytest.mark.asyncio
    async def test_per_cycle_session_discovers_once_per_cycle(self, digest_server):
        result = await Scheduler(_config(digest_server)).run()

        assert result.stop_reason == StopReason.MAX_REACHED
        assert result.stats.total == 4
        assert result.stats.successful == 4
        assert digest_server.challenges_issued == 2

    @pytest.mark.asyncio
    async def test_per_run_session_discovers_once(self, digest_server):
        config = _config(digest_server, session_scope=SessionScope.PER_RUN)

        result = await Scheduler(config).run()

        assert result.stats.successful == 4
        assert digest_server.challenges_issued == 1

    @pytest.mark.asyncio
    async def test_a_and_b_carry_the_same_task_id(self, digest_server):
        await Scheduler(_config(digest_server, max_requests=1)).run()

        bodies = [json.loads(r.body) for r in digest_server.requests if r.authorized]
        assert len(bodies) == 2
        assert bodies[0]["taskID"] == bodies[1]["taskID"]

    @pytest.mark.asyncio
    async def test_stale_nonce_recovered(self, rotating_digest_server):
        config = _config(rotating_digest_server, session_scope=SessionScope.PER_RUN)

        result = await Scheduler(config).run()

        assert result.stats.successful == 4
        assert result.stats.failed == 0

    @pytest.mark.asyncio
    async def test_wrong_password_recorded_as_auth_failures(self, digest_server):
        result = await Scheduler(_config(digest_server, password="wrong", max_requests=1)).run()

        assert result.stats.failed == 2
        assert result.metrics_report["overall"]["error_types"] == {"auth_rejected": 2}
        assert result.stop_reason == StopReason.MAX_REACHED

    @pytest.mark.asyncio
    async def test_server_error_on_b(self, digest_server):
        result = await Scheduler(_config(digest_server, b_path="fail", max_requests=1)).run()

        assert result.stats.successful == 1
        assert result.stats.failed == 1
        assert "failed with status: 500" in result.stats.last_error
