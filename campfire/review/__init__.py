"""Per-asset review: version chains, decisions and group completion."""
