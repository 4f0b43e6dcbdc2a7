"""async_ tests."""
