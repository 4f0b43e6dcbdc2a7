"""codec tests."""
