"""In-memory collaborators for the test suite."""
