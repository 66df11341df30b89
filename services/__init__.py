"""Services for quiz generation, persistence and caching."""
