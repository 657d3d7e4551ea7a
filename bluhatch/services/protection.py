"""
Protection Score
================
Derives a job's 0-100 protection status from its evidence set.

Score = coverage weights of the evidence types present
      + volume bonus (per item, capped)
      + GPS bonus (any item located)
      + signed-approval bonus (any approved item carrying a signature)
clamped to [0, 100].

Every component only grows as items are added, so adding evidence never
lowers the score.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from bluhatch.models.evidence_item import EvidenceItem, EvidenceType

_DEFAULT_WEIGHTS = {
    EvidenceType.before: 20,
    EvidenceType.after: 20,
    EvidenceType.approval: 15,
    EvidenceType.progress: 10,
    EvidenceType.contract: 10,
    EvidenceType.defect: 5,
    EvidenceType.receipt: 5,
}

_LEVELS = (
    (90, "Excellent Protection"),
    (80, "Strong Protection"),
    (70, "Good Protection"),
    (60, "Adequate Protection"),
    (50, "Basic Protection"),
)


@dataclass(frozen=True)
class ScorePolicy:
    type_weights: Mapping[EvidenceType, int] = field(default_factory=lambda: dict(_DEFAULT_WEIGHTS))
    per_item_bonus: int = 1
    volume_bonus_cap: int = 5
    gps_bonus: int = 5
    signed_approval_bonus: int = 5


DEFAULT_POLICY = ScorePolicy()


def calculate_protection_score(
    items: Iterable[EvidenceItem], policy: ScorePolicy = DEFAULT_POLICY
) -> int:
    items = list(items)
    present = {EvidenceType(i.evidence_type) for i in items}

    score = sum(policy.type_weights.get(t, 0) for t in present)
    score += min(len(items) * policy.per_item_bonus, policy.volume_bonus_cap)
    if any(i.gps_latitude is not None and i.gps_longitude is not None for i in items):
        score += policy.gps_bonus
    if any(i.client_approval and i.client_signature for i in items):
        score += policy.signed_approval_bonus

    return max(0, min(100, score))


def protection_level(score: int) -> str:
    for threshold, label in _LEVELS:
        if score >= threshold:
            return label
    return "Limited Protection"


def recompute_job_protection(repo, job, policy: ScorePolicy = DEFAULT_POLICY) -> int:
    """Recompute and assign ``job.protection_status`` inside the caller's transaction."""
    score = calculate_protection_score(repo.list_evidence(job.id), policy)
    job.protection_status = score
    return score
