"""HTTP routes grouped by venue."""
