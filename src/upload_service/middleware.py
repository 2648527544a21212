"""Enforces the upload size and duration limits while the body is received.

Requests whose declared Content-Length is too big are refused up front.
Every other upload is counted chunk by chunk as the app pulls it, so a
chunked body or a client that trickles bytes is cut off before the rest of
the payload is accepted. The per-file limit is enforced again while each
part is written to disk.
"""

import asyncio
import logging

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .errors import FileStoreError, TooLarge, UploadTimeout

logger = logging.getLogger(__name__)


class UploadSizeLimitMiddleware:
    def __init__(self, app: ASGIApp, path: str, max_bytes: int, timeout: float | None = None) -> None:
        self.app = app
        self.path = path
        self.max_bytes = max_bytes
        self.timeout = timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("method") != "POST" or scope.get("path") != self.path:
            await self.app(scope, receive, send)
            return

        declared = None
        for key, value in scope.get("headers", []):
            if key.lower() == b"content-length":
                declared = value
                break

        if declared is not None:
            try:
                length = int(declared)
            except ValueError:
                response = JSONResponse(status_code=400, content={"error": "Invalid Content-Length"})
                await response(scope, receive, send)
                return
            if length > self.max_bytes:
                await self._reject(TooLarge("File too large"), scope, receive, send)
                return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout if self.timeout else None
        received = 0
        body_done = False
        aborted: FileStoreError | None = None

        async def limited_receive() -> Message:
            nonlocal received, body_done, aborted
            # после тела receive ждёт только disconnect, без лимитов
            if body_done:
                return await receive()

            try:
                if deadline is None:
                    message = await receive()
                else:
                    message = await asyncio.wait_for(receive(), max(deadline - loop.time(), 0))
            except asyncio.TimeoutError:
                aborted = UploadTimeout()
                raise aborted

            if message["type"] != "http.request":
                body_done = True
                return message

            received += len(message.get("body", b""))
            if received > self.max_bytes:
                aborted = TooLarge("File too large")
                raise aborted
            if deadline is not None and loop.time() > deadline:
                aborted = UploadTimeout()
                raise aborted
            if not message.get("more_body", False):
                body_done = True
            return message

        async def guarded_send(message: Message) -> None:
            # ответ приложения на прерванное тело заменяется нашим
            if aborted is None:
                await send(message)

        try:
            await self.app(scope, limited_receive, guarded_send)
        except Exception:
            if aborted is None:
                raise

        if aborted is not None:
            await self._reject(aborted, scope, receive, send, received)

    async def _reject(self, exc: FileStoreError, scope: Scope, receive: Receive, send: Send,
                      received: int | None = None) -> None:
        logger.warning("Upload aborted: %s (received %s bytes)", exc.message, received)
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.message})
        await response(scope, receive, send)
