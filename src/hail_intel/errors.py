"""Exception types raised by the engine and its collaborators."""

from __future__ import annotations

from typing import Literal

FailureReason = Literal["timeout", "unreachable", "malformed"]


class HailIntelError(Exception):
    """Base class for every engine error."""


class SourceUnavailable(HailIntelError):
    """A source tier timed out, could not be reached, or answered garbage."""

    def __init__(self, tier: str, reason: FailureReason, detail: str = "") -> None:
        self.tier = tier
        self.reason = reason
        self.detail = detail
        message = f"{tier} tier {reason}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SourcesExhausted(SourceUnavailable):
    """Every tier failed and there is no fallback dataset to fall back on."""

    def __init__(self, tiers: list[str]) -> None:
        self.tiers = tiers
        super().__init__("all", "unreachable", ", ".join(tiers))


class InvalidReport(HailIntelError):
    """A raw report that cannot be trusted; dropped from its batch."""

    def __init__(self, report_id: str, problem: str) -> None:
        self.report_id = report_id
        self.problem = problem
        super().__init__(f"report {report_id!r}: {problem}")


class PersistenceFailure(HailIntelError):
    """The storage collaborator rejected a read or write."""
