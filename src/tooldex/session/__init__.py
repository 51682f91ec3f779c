"""Per-session record of which tools a caller has already received."""
