"""HTTP API for cached educational video generation."""
