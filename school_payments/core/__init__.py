"""Core payment aggregation logic."""
