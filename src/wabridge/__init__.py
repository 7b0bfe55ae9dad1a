"""wabridge — HTTP/WebSocket bridge for a single shared WhatsApp connection."""
