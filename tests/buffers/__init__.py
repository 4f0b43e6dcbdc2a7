"""buffers tests."""
