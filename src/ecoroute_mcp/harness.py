"""Diagnostic harness: run literal queries through the router and check them.

Used by ``ecoroute-mcp check`` to verify a deployed catalog routes the
canonical queries where they should go.
"""

import time
from dataclasses import dataclass, field

from loguru import logger

from ecoroute_mcp.models import DetectionResult
from ecoroute_mcp.router import EcosystemRouter


@dataclass(frozen=True)
class RoutingCase:
    """One literal query and what the router must answer for it.

    Only ``expected`` is mandatory; the other fields are checked when set.
    """

    query: str
    expected: str
    stage: str | None = None
    min_confidence: float | None = None
    max_confidence: float | None = None
    reasoning_contains: tuple[str, ...] = ()


DEFAULT_CASES: list[RoutingCase] = [
    RoutingCase(
        "How do I use React hooks?",
        "frontend_web",
        stage="alias",
        min_confidence=95,
        max_confidence=95,
        reasoning_contains=("react",),
    ),
    RoutingCase("Explain Rust ownership model", "systems", min_confidence=80),
    RoutingCase(
        "Deploying docker containers to AWS",
        "cloud_infra",
        min_confidence=80,
        reasoning_contains=("docker",),
    ),
    RoutingCase("Machine learning with python", "python"),
    RoutingCase("Styling components with utility classes", "styling"),
]


def find_mismatches(case: RoutingCase, result: DetectionResult) -> list[str]:
    """Every expectation of ``case`` that ``result`` does not meet."""
    mismatches = []
    if result.ecosystem.id != case.expected:
        mismatches.append(f"ecosystem {result.ecosystem.id} != {case.expected}")
    if case.stage is not None and result.stage != case.stage:
        mismatches.append(f"stage {result.stage} != {case.stage}")
    if case.min_confidence is not None and result.confidence < case.min_confidence:
        mismatches.append(f"confidence {result.confidence} < {case.min_confidence}")
    if case.max_confidence is not None and result.confidence > case.max_confidence:
        mismatches.append(f"confidence {result.confidence} > {case.max_confidence}")
    reasoning = result.reasoning.lower()
    for needle in case.reasoning_contains:
        if needle.lower() not in reasoning:
            mismatches.append(f"reasoning lacks {needle!r}")
    return mismatches


@dataclass
class CaseOutcome:
    case: RoutingCase
    passed: bool
    duration_ms: int
    result: DetectionResult | None = None
    error: str | None = None
    mismatches: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data: dict = {
            "query": self.case.query,
            "expected": self.case.expected,
            "passed": self.passed,
            "duration_ms": self.duration_ms,
        }
        if self.result is not None:
            data.update(
                {
                    "ecosystem": self.result.ecosystem.id,
                    "confidence": self.result.confidence,
                    "stage": self.result.stage,
                    "reasoning": self.result.reasoning,
                    "suggested_doc_sources": self.result.suggested_doc_sources,
                }
            )
        if self.mismatches:
            data["mismatches"] = self.mismatches
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class HarnessReport:
    outcomes: list[CaseOutcome] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def ok(self) -> bool:
        return self.passed == self.total

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "total": self.total,
            "cases": [o.to_dict() for o in self.outcomes],
        }


async def run_cases(
    router: EcosystemRouter, cases: list[RoutingCase] | None = None
) -> HarnessReport:
    """Route every case and check the result against its expectations.

    A case that raises is recorded as failed; the remaining cases still run.
    """
    report = HarnessReport()
    for case in cases if cases is not None else DEFAULT_CASES:
        start = time.perf_counter()
        try:
            result = await router.detect(case.query)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.error(f"Routing check errored for {case.query!r}: {e}")
            report.outcomes.append(
                CaseOutcome(case, False, duration_ms, error=f"{type(e).__name__}: {e}")
            )
            continue

        duration_ms = int((time.perf_counter() - start) * 1000)
        mismatches = find_mismatches(case, result)
        if mismatches:
            logger.warning(
                f"Routing check failed: {case.query!r} -> {result.ecosystem.id} "
                f"({'; '.join(mismatches)})"
            )
        report.outcomes.append(
            CaseOutcome(
                case, not mismatches, duration_ms, result, mismatches=mismatches
            )
        )

    return report
