"""diagnostics tests."""
