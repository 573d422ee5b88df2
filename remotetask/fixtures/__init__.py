"""Local HTTP fixtures used by tests and dry runs."""

from __future__ import annotations

__all__ = ["DigestFixtureServer"]

from remotetask.fixtures.digest_fixture_server import DigestFixtureServer
