"""
core/feature_flags.py -- Per-team feature flag resolution.

Flags are opt-in per team: the store holds (flag, team_id) rows and a flag is
on for a team iff its row exists. The lookup itself is injected so this module
stays free of database code.
"""

from collections.abc import Callable, Iterable
from typing import Optional

FEATURE_FLAGS: tuple[str, ...] = (
    "advancedExcel",
    "annotations",
    "dataroomIndex",
    "inDocumentLinks",
    "roomChangeNotifications",
    "slack",
    "tokens",
    "usStorage",
    "webhooks",
)


def get_feature_flags(
    team_id: Optional[str],
    enabled_for_team: Callable[[str], Iterable[str]],
    self_hosted: bool = False,
) -> dict[str, bool]:
    """Return {flag_name: enabled} for every known flag.

    No team -> everything off. Self-hosted -> everything on, there is nobody
    to gate features for. Names returned by enabled_for_team that are not in
    FEATURE_FLAGS are ignored.
    """
    if self_hosted:
        return {name: True for name in FEATURE_FLAGS}
    flags = {name: False for name in FEATURE_FLAGS}
    if not team_id:
        return flags
    for name in enabled_for_team(team_id):
        if name in flags:
            flags[name] = True
    return flags
