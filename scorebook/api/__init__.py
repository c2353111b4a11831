"""HTTP API for Scorebook."""
