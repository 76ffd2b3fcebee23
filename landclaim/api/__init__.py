"""HTTP API for the land claim engine."""
