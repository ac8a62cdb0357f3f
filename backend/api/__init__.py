from .websocket import handle_websocket, dispatch_client_message, WebSocketTransport

__all__ = ["handle_websocket", "dispatch_client_message", "WebSocketTransport"]
