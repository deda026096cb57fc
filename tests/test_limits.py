"""Unit tests for core/limits.py -- pure logic, no I/O, no mocking needed.

Covers:
- resolve_plan_limits(): plan defaults, trial plans, unknown plans, overrides
- evaluate_limits(): each can_add_* flag, zero/None limits, self-hosted
- the upgrade prompt for free, trial and paid teams
"""

import pytest

from core.limits import (
    PLAN_LIMITS,
    TRIAL_LIMITS,
    base_plan,
    evaluate_limits,
    is_free_plan,
    is_trial_plan,
    resolve_plan_limits,
)
from core.models import PlanLimits, Usage

# ---------------------------------------------------------------------------
# Plan names
# ---------------------------------------------------------------------------


def test_base_plan_strips_trial_suffix():
    assert base_plan("business+drtrial") == "business"
    assert base_plan("pro") == "pro"


def test_plan_predicates():
    assert is_free_plan("free")
    assert is_free_plan("free+drtrial")
    assert not is_free_plan("pro")
    assert is_trial_plan("pro+drtrial")
    assert not is_trial_plan("pro")


# ---------------------------------------------------------------------------
# resolve_plan_limits
# ---------------------------------------------------------------------------


def test_resolve_returns_plan_defaults():
    assert resolve_plan_limits("pro") == PLAN_LIMITS["pro"]


def test_resolve_unknown_plan_falls_back_to_free():
    assert resolve_plan_limits("enterprise-gold") == PLAN_LIMITS["free"]


def test_resolve_trial_plan_uses_trial_limits():
    assert resolve_plan_limits("free+drtrial") == TRIAL_LIMITS


def test_resolve_override_replaces_single_field():
    limits = resolve_plan_limits("free", {"documents": 500})
    assert limits.documents == 500
    assert limits.links == PLAN_LIMITS["free"].links


def test_resolve_override_null_means_unlimited():
    assert resolve_plan_limits("free", {"users": None}).users is None


def test_resolve_override_maps_camel_case_upload_flag_and_ignores_unknown_keys():
    limits = resolve_plan_limits("free", {"dataroomUpload": True, "bogus": 7})
    assert limits.dataroom_upload is True
    assert not hasattr(limits, "bogus")


# ---------------------------------------------------------------------------
# evaluate_limits
# ---------------------------------------------------------------------------


def _evaluate(limits, usage, plan="pro", **kwargs):
    return evaluate_limits(limits, usage, is_free=is_free_plan(plan), is_trial=is_trial_plan(plan), **kwargs)


@pytest.mark.parametrize(
    "used, limit, expected",
    [
        (49, 50, True),
        (50, 50, False),
        (51, 50, False),
        (1000, None, True),
        (1000, 0, True),
    ],
)
def test_document_flag_against_limit(used, limit, expected):
    flags = _evaluate(PlanLimits(documents=limit), Usage(documents=used))
    assert flags.can_add_documents is expected


def test_each_metric_is_checked_independently():
    flags = _evaluate(PlanLimits(documents=5, links=5, users=2), Usage(documents=1, links=5, users=1))
    assert flags.can_add_documents is True
    assert flags.can_add_links is False
    assert flags.can_add_users is True


def test_missing_limits_are_permissive():
    flags = _evaluate(None, Usage(documents=10_000, links=10_000, users=10_000))
    assert flags.can_add_documents and flags.can_add_links and flags.can_add_users


def test_missing_usage_counts_as_zero():
    flags = _evaluate(PlanLimits(documents=1, links=1, users=1), None)
    assert flags.can_add_documents and flags.can_add_links and flags.can_add_users


def test_self_hosted_allows_everything_and_hides_prompt():
    flags = _evaluate(PlanLimits(documents=1, links=1, users=1), Usage(5, 5, 5), plan="free", self_hosted=True)
    assert flags.can_add_documents and flags.can_add_links and flags.can_add_users
    assert flags.show_upgrade_plan_modal is False


# ---------------------------------------------------------------------------
# Upgrade prompt
# ---------------------------------------------------------------------------


def test_free_plan_shows_upgrade_prompt():
    assert _evaluate(PLAN_LIMITS["free"], Usage(), plan="free").show_upgrade_plan_modal is True


def test_paid_plan_hides_upgrade_prompt_even_when_full():
    flags = _evaluate(PLAN_LIMITS["pro"], Usage(documents=300, users=2), plan="pro")
    assert flags.can_add_documents is False
    assert flags.show_upgrade_plan_modal is False


def test_trial_with_free_seats_hides_prompt():
    assert _evaluate(TRIAL_LIMITS, Usage(users=1), plan="free+drtrial").show_upgrade_plan_modal is False


def test_trial_with_full_seats_shows_prompt():
    assert _evaluate(TRIAL_LIMITS, Usage(users=3), plan="free+drtrial").show_upgrade_plan_modal is True
