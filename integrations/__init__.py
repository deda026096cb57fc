"""integrations/ -- Third-party apps a team can install (currently Slack)."""
