"""collaborator tests."""
