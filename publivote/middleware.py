"""
Request diagnostics.

Each HTTP request gets a request id (the caller's ``X-Request-ID`` when
present, a fresh one otherwise), a wall-clock timer and a SQL statement
counter fed by an engine event.  All three are echoed as response headers;
requests slower than ``slow_request_ms`` are logged as warnings.
"""
import logging
import time
import uuid
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

_REQUEST_ID_HEADER = b"x-request-id"


def install_query_counter(engine) -> None:
    """Bump ``query_count_var`` for each statement *engine* sends (eager loads included)."""

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _on_statement(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


def _incoming_request_id(scope: Scope) -> str:
    for name, value in scope.get("headers", []):
        if name == _REQUEST_ID_HEADER and value:
            return value.decode("latin-1")[:64]
    return uuid.uuid4().hex


class RequestDiagnosticsMiddleware:
    """
    Pure ASGI middleware, so the counters set here share a context with
    the endpoint (``BaseHTTPMiddleware`` would run it in a child task).
    """

    def __init__(self, app: ASGIApp, slow_request_ms: float = 500.0) -> None:
        self.app = app
        self.slow_request_ms = slow_request_ms

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope)
        request_id_var.set(request_id)
        query_count_var.set(0)
        started = time.perf_counter()
        status_code = 500

        async def send_with_diagnostics(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                elapsed_ms = (time.perf_counter() - started) * 1000
                message["headers"] = [
                    *message.get("headers", []),
                    (_REQUEST_ID_HEADER, request_id.encode("latin-1")),
                    (b"x-response-time-ms", f"{elapsed_ms:.2f}".encode()),
                    (b"x-query-count", str(query_count_var.get()).encode()),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_with_diagnostics)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            level = logging.WARNING if elapsed_ms >= self.slow_request_ms else logging.DEBUG
            logger.log(
                level,
                "[%s] %s %s -> %s in %.1f ms, %d SQL statement(s)",
                request_id,
                scope.get("method"),
                scope.get("path"),
                status_code,
                elapsed_ms,
                query_count_var.get(),
            )
