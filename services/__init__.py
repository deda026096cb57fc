"""services/ -- Adapters for the managed services DocRoom talks to.

Every optional provider is a small capability interface with a live and a
disabled implementation. services/registry.py picks one per capability at
startup from core.config.Settings; consumers receive the chosen object through
app.state and never check environment variables themselves.

Layer rule: services/ imports stdlib, third-party libraries and core/ only.
registry.py is the one exception: it also wires up the adapters that live
with their feature (auth/passkeys.py, integrations/slack/client.py).
"""
