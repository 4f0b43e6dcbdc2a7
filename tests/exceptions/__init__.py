"""exceptions tests."""
