from __future__ import annotations

import json

from starlette.types import ASGIApp, Message, Receive, Scope, Send


LOCKDOWN_MESSAGE = "Service temporarily locked down"


def _json_response_messages(*, status: int, obj: object) -> list[Message]:
    body = json.dumps(obj, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    headers: list[tuple[bytes, bytes]] = [
        (b"content-type", b"application/json"),
        (b"content-length", str(len(body)).encode("ascii")),
        (b"x-lockdown", b"1"),
    ]
    return [
        {"type": "http.response.start", "status": status, "headers": headers},
        {"type": "http.response.body", "body": body, "more_body": False},
    ]


class LockdownMiddleware:
    """Answer 503 for every HTTP request except the allowed paths.

    Installed by ``create_app`` only when ``settings.lockdown`` is on; it does
    not consult the environment per request.
    """

    def __init__(self, app: ASGIApp, *, allow_paths: tuple[str, ...] = ()):
        self.app: ASGIApp = app
        self.allow_paths: tuple[str, ...] = allow_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = str(scope.get("path", ""))
        if path in self.allow_paths:
            await self.app(scope, receive, send)
            return

        for msg in _json_response_messages(
            status=503, obj={"ok": False, "error": LOCKDOWN_MESSAGE}
        ):
            await send(msg)
