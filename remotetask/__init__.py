"""Paired-request cycle runner with Digest authentication reuse.

Runs request A then request B on a fixed cadence, substituting per-cycle
generated values, and aggregates the outcome of every call.
"""

from __future__ import annotations

__all__ = []
