"""auth/ -- Authentication and account flows for DocRoom.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and the
capability interfaces in services/, plus emails/ and tasks/ for the
post-confirmation side effects. It does NOT import from api/, web/,
integrations/ or teams/. api/ and web/ import from auth/, not the other way
around.
"""
