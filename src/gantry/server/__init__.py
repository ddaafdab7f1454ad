"""HTTP surfaces: the orchestrator API, live log streams and the edge relay."""
