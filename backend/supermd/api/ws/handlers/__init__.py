"""WebSocket message handlers."""
