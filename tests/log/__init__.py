"""log tests."""
