"""Runs validation gates against candidate payloads.

Gates are supplied by the caller. Each one answers a single question about
a payload and reports a ``GateResult``; the runner stops at the first
rejection so the failure is attributed to exactly one gate.
"""

from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

from curation.core.enums import ContentKind
from curation.schemas.curation import GateResult
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)

CEFR_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")


@runtime_checkable
class ValidationGate(Protocol):
    name: str

    async def validate(self, kind: ContentKind, payload: dict) -> GateResult:
        ...


class GateRunReport:
    """Results of a gate run in execution order."""

    def __init__(self, results: list[GateResult]):
        self.results = results

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failure(self) -> Optional[GateResult]:
        return next((r for r in self.results if not r.passed), None)

    def as_json(self) -> list[dict]:
        return [r.model_dump() for r in self.results]


async def run_gates(kind: ContentKind, payload: dict, gates: Sequence[ValidationGate]) -> GateRunReport:
    results: list[GateResult] = []

    for gate in gates:
        result = await gate.validate(kind, payload)
        results.append(result)
        if not result.passed:
            LOGGER.info(
                f"Gate {gate.name} rejected {kind.value} payload",
                extra={"gate": gate.name, "reason": result.reason},
            )
            break

    return GateRunReport(results)


class RequiredFieldsGate:
    """Rejects payloads missing any of the fields required for their kind."""

    name = "required_fields"

    def __init__(self, required: dict[ContentKind, Iterable[str]]):
        self.required = {kind: tuple(fields) for kind, fields in required.items()}

    async def validate(self, kind: ContentKind, payload: dict) -> GateResult:
        missing = [f for f in self.required.get(kind, ()) if payload.get(f) in (None, "", [])]
        if missing:
            return GateResult(
                gate_name=self.name,
                passed=False,
                reason=f"Missing required fields: {', '.join(missing)}",
                details={"missing_fields": missing},
            )
        return GateResult(gate_name=self.name, passed=True)


class AllowedValuesGate:
    """Rejects payloads whose ``field`` is present but outside ``allowed``."""

    def __init__(self, name: str, field: str, allowed: Iterable[str]):
        self.name = name
        self.field = field
        self.allowed = frozenset(allowed)

    async def validate(self, kind: ContentKind, payload: dict) -> GateResult:
        value = payload.get(self.field)
        if value is not None and value not in self.allowed:
            return GateResult(
                gate_name=self.name,
                passed=False,
                reason=f"Invalid {self.field}: {value}",
                details={"field": self.field, "value": value, "allowed": sorted(self.allowed)},
            )
        return GateResult(gate_name=self.name, passed=True)


def cefr_level_gate() -> AllowedValuesGate:
    return AllowedValuesGate("cefr_level", "level", CEFR_LEVELS)
