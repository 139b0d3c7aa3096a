"""Tests for the deterministic prefilter gate."""

from __future__ import annotations

import pytest  # type: ignore

from personarank.normalize.schema import Candidate
from personarank.normalize.title import normalize_title
from personarank.rank.prefilter import partition_candidates, prefilter_lead


def gate(title: str, bucket):
    return prefilter_lead(title, normalize_title(title), bucket)


@pytest.mark.parametrize("bucket", ["startup", "smb", "mid_market", "enterprise", None])
def test_hr_always_excluded(bucket) -> None:
    result = gate("HR Manager", bucket)
    assert result.should_exclude
    assert result.code == "HR"


@pytest.mark.parametrize(
    "title, code",
    [
        ("Talent Acquisition Partner", "HR"),
        ("Senior Accountant", "FINANCE"),
        ("General Counsel", "LEGAL"),
        ("VP Customer Success", "CS"),
        ("Board Member", "BOARD"),
        ("Sales Intern", "INTERN"),
    ],
)
def test_hard_exclusions(title: str, code: str) -> None:
    result = gate(title, "smb")
    assert result.should_exclude
    assert result.code == code


def test_ceo_depends_on_size() -> None:
    assert not gate("CEO", "startup").should_exclude
    assert not gate("CEO", "smb").should_exclude
    enterprise = gate("CEO", "enterprise")
    assert enterprise.should_exclude
    assert enterprise.code == "SIZE_MISMATCH"
    assert enterprise.reason == "CEO too removed at larger companies"


def test_gtm_context_overrides_size_rule() -> None:
    assert not gate("President of Sales", "enterprise").should_exclude
    assert gate("President", "enterprise").should_exclude
    assert not gate("Co-Founder & Head of Growth", "enterprise").should_exclude


def test_founder_only_excluded_at_enterprise() -> None:
    assert not gate("Founder", "mid_market").should_exclude
    assert gate("Founder", "enterprise").code == "SIZE_MISMATCH"


def test_startup_finance_leader_exception() -> None:
    assert not gate("Head of Finance", "startup").should_exclude
    assert gate("Head of Finance", "smb").code == "FINANCE"
    # the exception only covers leadership titles
    assert gate("Payroll Specialist", "startup").code == "FINANCE"


def test_word_boundaries() -> None:
    assert not gate("International Sales Director", "smb").should_exclude
    assert not gate("VP of Sales", "smb").should_exclude


def test_gate_is_deterministic() -> None:
    assert gate("HR Business Partner", "enterprise") == gate("HR Business Partner", "enterprise")


def test_partition_candidates() -> None:
    jane = Candidate("1", "Jane Doe", "VP of Sales", normalize_title("VP of Sales"))
    john = Candidate("2", "John Lee", "HR Generalist", normalize_title("HR Generalist"))
    passed, excluded = partition_candidates([jane, john], "smb")
    assert passed == [jane]
    assert [(c.id, r.code) for c, r in excluded] == [("2", "HR")]
