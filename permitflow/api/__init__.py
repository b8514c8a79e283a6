"""HTTP API for permitflow."""
