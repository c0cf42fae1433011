"""Infrastructure helpers (logging, audit)."""
