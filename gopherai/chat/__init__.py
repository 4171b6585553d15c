"""Chat sessions: orchestration, persistence pipeline, bootstrap and HTTP routes."""
