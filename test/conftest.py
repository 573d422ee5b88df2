"""Pytest configuration and fixtures

Provides shared fixtures for all tests: request templates, run configs,
a mock-transport session factory and a local Digest-protected server.
"""

import sys
from pathlib import Path

import httpx
import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from remotetask.core.digest import DigestSession
from remotetask.core.models import AuthCredential, RequestTemplate, RunConfig
from remotetask.fixtures import DigestFixtureServer


# ============================================================================
# REQUEST AND CONFIG FIXTURES
# ============================================================================

TEST_USERNAME = "admin"
TEST_PASSWORD = "s3cret-pass"
TEST_REALM = "remotetask-test"


@pytest.fixture
def credential():
    return AuthCredential(username=TEST_USERNAME, password=TEST_PASSWORD)


@pytest.fixture
def run_config():
    """A minimal two-cycle config pointing at an unroutable test host."""
    return RunConfig(
        request_a=RequestTemplate(method="POST", url="http://device.test/tasks", body='{"id": "{taskID}"}'),
        request_b=RequestTemplate(method="PUT", url="http://device.test/tasks/delete", body='{"id": "{taskID}"}'),
        delay_between_a_and_b_ms=500,
        delay_between_a_requests_ms=3000,
        max_requests=2,
    )


# ============================================================================
# TRANSPORT FIXTURES
# ============================================================================


@pytest.fixture
def mock_session_factory():
    """Build Scheduler session factories backed by httpx.MockTransport.

    Usage:
        factory = mock_session_factory(handler, calls=calls)

    ``calls`` (a list) is appended to each time a session is built.
    """

    def _build(handler, *, calls=None):
        def _factory(config: RunConfig) -> DigestSession:
            if calls is not None:
                calls.append(config)
            return DigestSession.from_config(config, transport=httpx.MockTransport(handler))

        return _factory

    return _build


# ============================================================================
# DIGEST FIXTURE SERVER
# ============================================================================


@pytest.fixture(scope="function")
def digest_server():
    """Local Digest-protected HTTP server on a free port.

    Usage:
        def test_something(digest_server):
            url = digest_server.get_url("tasks")
    """
    server = DigestFixtureServer(username=TEST_USERNAME, password=TEST_PASSWORD, realm=TEST_REALM)
    server.start()
    yield server
    server.stop()


@pytest.fixture(scope="function")
def rotating_digest_server():
    """Digest server that rotates its nonce after every authorized request."""
    server = DigestFixtureServer(
        username=TEST_USERNAME,
        password=TEST_PASSWORD,
        realm=TEST_REALM,
        stale_after=1,
    )
    server.start()
    yield server
    server.stop()
