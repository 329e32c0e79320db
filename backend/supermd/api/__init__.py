"""API layer (HTTP routes and the collaboration WebSocket)."""
