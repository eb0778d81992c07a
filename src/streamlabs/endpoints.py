"""
Streamlabs API endpoint definitions.

Documentation: https://dev.streamlabs.com/docs/socket-api
"""

API_BASE_URL = "https://streamlabs.com/api/v1.0"

# REST Endpoints
SOCKET_TOKEN = f"{API_BASE_URL}/socket/token"
DONATIONS = f"{API_BASE_URL}/donations"

# Realtime (socket.io, Engine.IO v3 over websocket)
SOCKET_URL = "wss://sockets.streamlabs.com/socket.io/?token={token}&EIO=3&transport=websocket"

REQUEST_CONTENT_TYPE = "application/x-www-form-urlencoded"
REQUEST_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


def socket_url(socket_token: str) -> str:
    """Realtime websocket URL authenticated with a socket token."""
    return SOCKET_URL.format(token=socket_token or "")
