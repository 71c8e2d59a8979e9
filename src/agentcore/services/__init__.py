"""Settings and other process-level services."""
