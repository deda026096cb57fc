"""integrations/slack/ -- Slack app: OAuth install, message templates, event fan-out."""
