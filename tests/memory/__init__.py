"""memory tests."""
