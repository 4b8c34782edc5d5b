"""Asset Store contract and implementations."""
