"""Per-domain rollup of engine output."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from src.mastery.models import InterventionStatus, MasteryStatus, StandardMasteryView


@dataclass
class DomainSummary:
    """Status counts for the standards of one domain."""

    domain: str
    counts: dict[MasteryStatus, int] = field(
        default_factory=lambda: {status: 0 for status in MasteryStatus}
    )
    active_interventions: int = 0

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def on_or_above(self) -> int:
        return self.counts[MasteryStatus.ON] + self.counts[MasteryStatus.ABOVE]

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "total": self.total,
            "counts": {status.value: n for status, n in self.counts.items()},
            "on_or_above": self.on_or_above,
            "active_interventions": self.active_interventions,
        }


def summarize_by_domain(views: Iterable[StandardMasteryView]) -> list[DomainSummary]:
    """Group views by domain (unknown domain -> "other"), in first-seen order."""
    summaries: dict[str, DomainSummary] = {}
    for view in views:
        domain = view.domain or "other"
        summary = summaries.setdefault(domain, DomainSummary(domain))
        summary.counts[view.effective_status] += 1
        if view.intervention_status is not InterventionStatus.NONE:
            summary.active_interventions += 1
    return list(summaries.values())
