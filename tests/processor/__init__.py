"""processor tests."""
