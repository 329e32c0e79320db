"""WebSocket relay for collaborative editing."""
