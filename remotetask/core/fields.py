"""Per-cycle field generation and placeholder substitution.

A cycle's generated values are computed once and shared by its A and B
requests, so a ``{taskID}`` created by A can be deleted by B.
"""

from __future__ import annotations

import random
import time
import uuid
from dataclasses import replace
from typing import Iterable, Mapping

from remotetask.core.models import CycleFields, FieldSpec, FieldTarget, GeneratorKind, RequestTemplate

FIXED_FALLBACK = "default"
UNKNOWN_FALLBACK = "unknown"

_RANDOM_LOW = 1000
_RANDOM_HIGH = 9999


def generate_field(spec: FieldSpec, cycle: int, *, rng: random.Random | None = None) -> str:
    """Produce the value of ``spec`` for ``cycle``.

    counter and fixed are pure functions of the cycle index; uuid, random and
    timestamp are not. Unknown generator kinds never raise.
    """
    kind = spec.generator
    if kind == GeneratorKind.RANDOM.value:
        number = (rng or random).randrange(_RANDOM_LOW, _RANDOM_HIGH)
        return f"random_{cycle}_{number}"
    if kind == GeneratorKind.TIMESTAMP.value:
        return f"timestamp_{cycle}_{int(time.time() * 1000)}"
    if kind == GeneratorKind.COUNTER.value:
        return f"counter_{cycle}"
    if kind == GeneratorKind.UUID.value:
        return str(uuid.uuid4())
    if kind == GeneratorKind.FIXED.value:
        return spec.value if spec.value is not None else FIXED_FALLBACK
    return spec.value if spec.value is not None else UNKNOWN_FALLBACK


def partition_by_target(
    specs: Iterable[FieldSpec],
    cycle: int,
    *,
    rng: random.Random | None = None,
) -> CycleFields:
    """Evaluate every spec once and route it to the header or body mapping."""
    header_fields: dict[str, str] = {}
    body_fields: dict[str, str] = {}
    for spec in specs:
        value = generate_field(spec, cycle, rng=rng)
        if spec.target == FieldTarget.BODY:
            body_fields[spec.name] = value
        else:
            header_fields[spec.name] = value
    return CycleFields(header_fields=header_fields, body_fields=body_fields)


def substitute_body(template: str | None, body_fields: Mapping[str, str]) -> str | None:
    """Fill ``{name}`` placeholders, or synthesise a flat JSON object.

    Without a template the object is built by plain concatenation: values
    containing quotes or control characters yield invalid JSON.
    """
    if template is not None:
        body = template
        for name, value in body_fields.items():
            body = body.replace("{" + name + "}", value)
        return body

    if not body_fields:
        return None

    pairs = [f'"{name}":"{value}"' for name, value in body_fields.items()]
    return "{" + ",".join(pairs) + "}"


def merge_headers(configured: Mapping[str, str], generated: Mapping[str, str]) -> dict[str, str]:
    """Merge generated headers under the configured ones.

    Names compare case-insensitively; a configured header always wins.
    """
    configured_names = {name.lower() for name in configured}
    merged = {name: value for name, value in generated.items() if name.lower() not in configured_names}
    merged.update(configured)
    return merged


def apply_cycle_fields(template: RequestTemplate, fields: CycleFields) -> RequestTemplate:
    """Return a per-cycle copy of ``template`` carrying this cycle's values."""
    body = template.body
    if fields.body_fields:
        body = substitute_body(template.body, fields.body_fields)

    headers = dict(template.headers)
    if fields.header_fields:
        headers = merge_headers(template.headers, fields.header_fields)

    return replace(template, headers=headers, body=body)


class FieldGenerator:
    """Generates the CycleFields of a run, one cycle at a time."""

    def __init__(self, specs: Iterable[FieldSpec], *, rng: random.Random | None = None) -> None:
        self._specs = tuple(specs)
        self._rng = rng

    @property
    def specs(self) -> tuple[FieldSpec, ...]:
        return self._specs

    def generate(self, spec: FieldSpec, cycle: int) -> str:
        return generate_field(spec, cycle, rng=self._rng)

    def for_cycle(self, cycle: int) -> CycleFields:
        return partition_by_target(self._specs, cycle, rng=self._rng)
