"""Live Relay: WebSocket relay between browser clients and Gemini Live."""

__version__ = "0.1.0"
