"""
core/limits.py -- Plan limits and the capability evaluator.

Pure functions only. Reading the team's plan and usage is the caller's job
(teams/store.py); this module turns those two snapshots into booleans.

Consistency note: usage and limits are read in separate queries, so a
concurrent insert can slip between the read and the check. The flags are an
advisory snapshot, not a transactional guarantee.
"""

from typing import Optional

from core.models import LimitFlags, PlanLimits, Usage

# ---------------------------------------------------------------------------
# Plan catalogue
# ---------------------------------------------------------------------------

# Suffix appended to a plan name while the team is on a data room trial,
# e.g. "free+drtrial".
TRIAL_SUFFIX = "+drtrial"

PLAN_LIMITS: dict[str, PlanLimits] = {
    "free": PlanLimits(documents=50, links=50, users=1, domains=0, datarooms=0),
    "pro": PlanLimits(documents=300, links=None, users=2, domains=1, datarooms=0),
    "business": PlanLimits(documents=None, links=None, users=3, domains=5, datarooms=1, dataroom_upload=True),
    "datarooms": PlanLimits(documents=None, links=None, users=3, domains=10, datarooms=100, dataroom_upload=True),
    "datarooms-plus": PlanLimits(
        documents=None, links=None, users=5, domains=1000, datarooms=1000, dataroom_upload=True
    ),
}

# Data room trials unlock the data rooms plan for a limited seat count.
TRIAL_LIMITS = PlanLimits(documents=None, links=None, users=3, domains=1, datarooms=1, dataroom_upload=True)

_LIMIT_FIELDS = ("documents", "links", "users", "domains", "datarooms", "dataroom_upload")


def base_plan(plan: str) -> str:
    """Return the plan name without the trial suffix."""
    return plan.split("+", 1)[0]


def is_free_plan(plan: str) -> bool:
    return base_plan(plan) == "free"


def is_trial_plan(plan: str) -> bool:
    return plan.endswith(TRIAL_SUFFIX)


def resolve_plan_limits(plan: str, override: Optional[dict] = None) -> PlanLimits:
    """Merge the plan defaults with a team's stored override.

    Unknown plans fall back to the free tier. Override keys that are not limit
    fields are ignored; an explicit null in the override means unlimited.
    """
    defaults = TRIAL_LIMITS if is_trial_plan(plan) else PLAN_LIMITS.get(base_plan(plan), PLAN_LIMITS["free"])
    values = {name: getattr(defaults, name) for name in _LIMIT_FIELDS}
    if override:
        for key, value in override.items():
            name = "dataroom_upload" if key == "dataroomUpload" else key
            if name in values:
                values[name] = value
    return PlanLimits(**values)


def _under_limit(used: int, limit: Optional[int]) -> bool:
    # A missing or zero limit is treated as "no limit configured".
    if not limit:
        return True
    return used < limit


def evaluate_limits(
    limits: Optional[PlanLimits],
    usage: Optional[Usage],
    *,
    is_free: bool,
    is_trial: bool,
    self_hosted: bool = False,
) -> LimitFlags:
    """Compute the capability flags shown to a team.

    Each can_add_* flag compares the live usage counter against the plan
    limit. When limits have not been loaded yet (limits is None) every flag
    is permissive. Self-hosted deployments skip the check entirely.

    The upgrade prompt fires for free teams outside a trial, and for trial
    teams that have already filled their seats.
    """
    if self_hosted:
        return LimitFlags(
            can_add_documents=True,
            can_add_links=True,
            can_add_users=True,
            show_upgrade_plan_modal=False,
        )

    usage = usage or Usage()
    if limits is None:
        can_docs = can_links = can_users = True
    else:
        can_docs = _under_limit(usage.documents, limits.documents)
        can_links = _under_limit(usage.links, limits.links)
        can_users = _under_limit(usage.users, limits.users)

    show_modal = (is_free and not is_trial) or (is_trial and not can_users)
    return LimitFlags(
        can_add_documents=can_docs,
        can_add_links=can_links,
        can_add_users=can_users,
        show_upgrade_plan_modal=show_modal,
    )
