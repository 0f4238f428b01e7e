"""External service clients (GitHub, Jira)."""
