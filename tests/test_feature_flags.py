"""Tests for core/feature_flags.py and GET /api/feature-flags.

Covers:
- every known flag is present in the answer
- no team -> all off; self-hosted -> all on
- only flags stored for the team are on; unknown stored names are ignored
- endpoint reads teamId and answers {"error": ...} with 500 when the lookup fails
"""

from unittest.mock import patch

from core.feature_flags import FEATURE_FLAGS, get_feature_flags


def test_no_team_means_everything_off():
    flags = get_feature_flags(None, lambda team_id: ["slack"])
    assert set(flags) == set(FEATURE_FLAGS)
    assert not any(flags.values())


def test_empty_team_id_means_everything_off():
    assert not any(get_feature_flags("", lambda team_id: ["slack"]).values())


def test_self_hosted_means_everything_on():
    flags = get_feature_flags(None, lambda team_id: [], self_hosted=True)
    assert all(flags.values())


def test_only_stored_flags_are_on():
    seen = []

    def lookup(team_id):
        seen.append(team_id)
        return ["slack", "annotations", "not-a-flag"]

    flags = get_feature_flags("team1", lookup)
    assert seen == ["team1"]
    assert flags["slack"] is True and flags["annotations"] is True
    assert "not-a-flag" not in flags
    assert sum(flags.values()) == 2


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


def test_endpoint_returns_team_flags(api_env):
    team = api_env.create_team()
    api_env.teams.enable_feature(team.id, "webhooks")
    api_env.teams.enable_feature(team.id, "webhooks")  # idempotent

    resp = api_env.client.get("/api/feature-flags", params={"teamId": team.id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["webhooks"] is True
    assert body["slack"] is False


def test_endpoint_without_team_is_all_off(api_env):
    resp = api_env.client.get("/api/feature-flags")
    assert resp.status_code == 200
    assert not any(resp.json().values())


def test_endpoint_lookup_failure_is_500(api_env):
    with patch.object(api_env.teams, "get_enabled_features", side_effect=RuntimeError("db down")):
        resp = api_env.client.get("/api/feature-flags", params={"teamId": "team1"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to fetch feature flags"}
