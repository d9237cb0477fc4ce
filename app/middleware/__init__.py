"""Request-ID middleware — tags every HTTP request with an ``X-Request-ID``.

Pure ASGI (not ``BaseHTTPMiddleware``) so streaming responses and the
lifespan scope pass through untouched.
"""

import uuid

from starlette.types import ASGIApp, Receive, Scope, Send

_MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware:
    """Reuses a client-supplied ``X-Request-ID`` or generates a UUID-4.

    The ID is stored on ``request.state.request_id`` and echoed back on the
    response so pipeline logs can be correlated with client reports.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        supplied = headers.get(b"x-request-id", b"").decode("latin-1").strip()
        request_id = supplied[:_MAX_REQUEST_ID_LENGTH] or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: dict) -> None:
            if message["type"] == "http.response.start":
                raw_headers = list(message.get("headers", []))
                raw_headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": raw_headers}
            await send(message)

        await self.app(scope, receive, send_with_id)
