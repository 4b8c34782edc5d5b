"""Recipe-granularity review."""
