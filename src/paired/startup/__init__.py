"""Single-flight startup: lock, status file, phases and orchestration."""
