"""emails/ -- Transactional email composition (templates + send helpers)."""
