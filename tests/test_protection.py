"""Tests for the protection score."""

from __future__ import annotations

import itertools

import pytest

from bluhatch.models import EvidenceItem, EvidenceType
from bluhatch.services.protection import (
    DEFAULT_POLICY,
    ScorePolicy,
    calculate_protection_score,
    protection_level,
    recompute_job_protection,
)

from conftest import make_evidence


def _item(evidence_type, gps=False, signed=False) -> EvidenceItem:
    return EvidenceItem(
        evidence_type=evidence_type,
        description="x",
        gps_latitude=51.5 if gps else None,
        gps_longitude=-0.1 if gps else None,
        client_approval=True if signed else None,
        client_signature="data:image/png;base64,AAAA" if signed else None,
    )


def _candidates():
    for evidence_type in EvidenceType:
        yield _item(evidence_type)
        yield _item(evidence_type, gps=True)
        yield _item(evidence_type, signed=True)


class TestScore:
    def test_empty_job_scores_zero(self):
        assert calculate_protection_score([]) == 0

    def test_single_before_item(self):
        assert calculate_protection_score([_item(EvidenceType.before)]) == 21

    def test_full_coverage(self):
        items = [_item(t, gps=True, signed=True) for t in EvidenceType]
        assert calculate_protection_score(items) == 100

    def test_clamped_to_100(self):
        policy = ScorePolicy(gps_bonus=50, signed_approval_bonus=50)
        items = [_item(t, gps=True, signed=True) for t in EvidenceType]
        assert calculate_protection_score(items, policy) == 100

    def test_volume_bonus_capped(self):
        items = [_item(EvidenceType.progress) for _ in range(20)]
        assert calculate_protection_score(items) == 10 + DEFAULT_POLICY.volume_bonus_cap

    def test_signature_without_approval_earns_no_bonus(self):
        item = _item(EvidenceType.approval)
        item.client_signature = "sig"
        item.client_approval = False
        assert calculate_protection_score([item]) == 15 + 1

    @pytest.mark.parametrize("size", [0, 1, 2, 3])
    def test_adding_an_item_never_lowers_score(self, size):
        pool = list(_candidates())
        for base in itertools.islice(itertools.combinations(pool, size), 200):
            before = calculate_protection_score(base)
            assert 0 <= before <= 100
            for extra in pool:
                after = calculate_protection_score(list(base) + [extra])
                assert after >= before
                assert after <= 100


class TestLevels:
    @pytest.mark.parametrize(
        "score, label",
        [
            (100, "Excellent Protection"),
            (90, "Excellent Protection"),
            (85, "Strong Protection"),
            (70, "Good Protection"),
            (65, "Adequate Protection"),
            (50, "Basic Protection"),
            (49, "Limited Protection"),
            (0, "Limited Protection"),
        ],
    )
    def test_levels(self, score, label):
        assert protection_level(score) == label


class TestRecompute:
    def test_writes_score_onto_job(self, repo, sample_job):
        make_evidence(repo, sample_job, evidence_type=EvidenceType.before)
        make_evidence(repo, sample_job, evidence_type=EvidenceType.after)
        assert recompute_job_protection(repo, sample_job) == 42
        assert sample_job.protection_status == 42
