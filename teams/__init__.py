"""teams/ -- Teams, their content (documents, data rooms, links, views) and installed integrations."""
