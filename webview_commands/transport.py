"""
Transport Adapter
=================

Sits between the host's request/response channel (a webview custom
protocol handler, or the HTTP bridge) and the dispatcher.

Request handling
----------------
    OPTIONS          → 204 + CORS headers, no body
    not POST/OPTIONS → 405, Allow: POST, OPTIONS
    POST             → resolve name → parse JSON body → dispatch
                       → 200 application/json envelope

OPTIONS and 405 are answered immediately on the calling thread. A POST
is handed to a worker event loop running in its own daemon thread, so
the host's UI thread never waits on a handler. Every request is
answered exactly once; the responder wrapper enforces it.

Concurrency
-----------
Each POST becomes one task on the worker loop. Tasks run concurrently
and finish in whatever order their handlers finish. Sync handlers are
run in the loop's default executor by the dispatcher, so one that
blocks holds up nobody else. ``max_concurrent``
caps how many handlers run at once; the rest wait their turn on a
semaphore. None means no cap.

Usage
-----
    adapter = TransportAdapter(registry, scheme="app")

    def on_request(method, uri, body, reply):
        adapter.handle(Request(method, uri, body),
                       lambda resp: reply(resp.status, resp.headers, resp.body))

    ...
    adapter.close()
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from webview_commands.dispatcher import CommandDispatcher, DispatchResult
from webview_commands.registry import CommandRegistry
from webview_commands.resolver import resolve_command_name, split_uri

logger = logging.getLogger(__name__)

ALLOW_ORIGIN = ("Access-Control-Allow-Origin", "*")
ALLOWED_METHODS = "POST, OPTIONS"


class ResponderError(RuntimeError):
    """A request was answered more than once."""


@dataclass
class Request:
    """One inbound pseudo-HTTP request."""
    method: str
    uri: str
    body: bytes = b""
    headers: dict = field(default_factory=dict)


@dataclass
class Response:
    """One outbound pseudo-HTTP response.

    Headers are an ordered list of (name, value) pairs.
    """
    status: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default


class Responder:
    """Wraps a host callback so it is called at most once."""

    def __init__(self, callback: Callable[[Response], Any]):
        self._callback = callback
        self._lock = threading.Lock()
        self._responded = False

    @property
    def responded(self) -> bool:
        return self._responded

    def respond(self, response: Response) -> None:
        with self._lock:
            if self._responded:
                raise ResponderError("Response already sent for this request")
            self._responded = True
        self._callback(response)


def preflight_response() -> Response:
    return Response(
        status=204,
        headers=[
            ALLOW_ORIGIN,
            ("Access-Control-Allow-Methods", ALLOWED_METHODS),
            ("Access-Control-Allow-Headers", "Content-Type"),
        ],
    )


def method_not_allowed_response() -> Response:
    return Response(
        status=405,
        headers=[("Allow", ALLOWED_METHODS), ALLOW_ORIGIN],
        body=b"Method Not Allowed",
    )


def encode_envelope(envelope: Any) -> bytes:
    """Compact UTF-8 JSON. Returns b"" when the envelope is not serializable."""
    try:
        return json.dumps(
            envelope, ensure_ascii=False, allow_nan=False, separators=(",", ":")
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not serialize response envelope: {e}")
        return b""


def json_response(result: DispatchResult) -> Response:
    return Response(
        status=200,
        headers=[("Content-Type", "application/json"), ALLOW_ORIGIN],
        body=encode_envelope(result.to_envelope()),
    )


def parse_body(body: bytes) -> Any:
    """Decode a JSON request body; anything unparseable becomes None."""
    if not body:
        return None
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Request body is not valid JSON, using null: {e}")
        return None


async def _cancel_tasks() -> None:
    """Cancel every other task on the running loop and wait for them to unwind."""
    current = asyncio.current_task()
    tasks = [t for t in asyncio.all_tasks() if t is not current]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class TransportAdapter:
    """Applies the wire protocol and runs dispatches off the caller's thread.

    Parameters
    ----------
    registry : CommandRegistry
        Sealed when the adapter starts serving.
    scheme : str
        Custom protocol scheme name, e.g. "app" for ``app://greet``.
    windows_host_form : bool
        Accept ``http://<scheme>.<command>`` addresses, which is how
        webviews that cannot load custom schemes reach the handler.
    include_authority : bool
        Use the URI authority as part of the command name. The HTTP
        bridge turns this off since its authority is host:port.
    max_concurrent : int or None
        Cap on concurrently running handlers. None for no cap.
    timeout : float or None
        Per-dispatch timeout in seconds. None waits forever.
    """

    def __init__(self, registry: CommandRegistry, scheme: str = "app",
                 windows_host_form: bool = True, include_authority: bool = True,
                 max_concurrent: Optional[int] = None, timeout: Optional[float] = None,
                 dispatcher: Optional[CommandDispatcher] = None):
        if max_concurrent is not None and max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.registry = registry
        self.scheme = scheme
        self.windows_host_form = windows_host_form
        self.include_authority = include_authority
        self.max_concurrent = max_concurrent
        self.dispatcher = dispatcher or CommandDispatcher(registry, timeout=timeout)

        self._limiters: dict[asyncio.AbstractEventLoop, asyncio.Semaphore] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self._pending: set[concurrent.futures.Future] = set()

    @classmethod
    def from_config(cls, registry: CommandRegistry, config, **overrides) -> "TransportAdapter":
        """Build from a CommandsConfig (see config_manager)."""
        kwargs = dict(
            scheme=config.protocol.scheme,
            windows_host_form=config.protocol.windows_host_form,
            max_concurrent=config.dispatch.max_concurrent,
            timeout=config.dispatch.timeout_seconds,
        )
        kwargs.update(overrides)
        return cls(registry, **kwargs)

    # ─── Name resolution ────────────────────────────────────────────

    def command_name(self, uri: str) -> str:
        """Resolve the command name addressed by ``uri``."""
        scheme, authority, path = split_uri(uri)
        if not self.include_authority:
            authority = ""
        elif self.windows_host_form and scheme.lower() in ("http", "https"):
            prefix = f"{self.scheme}."
            if authority.lower().startswith(prefix.lower()):
                authority = authority[len(prefix):]
        return resolve_command_name(authority, path)

    # ─── Asyncio entry point ────────────────────────────────────────

    async def handle_async(self, request: Request) -> Response:
        """Handle ``request`` on the running loop and return its response."""
        immediate = self._immediate_response(request)
        if immediate is not None:
            return immediate
        self.registry.seal()
        name = self.command_name(request.uri)
        args = parse_body(request.body)
        result = await self._dispatch_limited(name, args)
        return json_response(result)

    # ─── Callback entry point (host UI thread) ──────────────────────

    def handle(self, request: Request,
               respond: Callable[[Response], Any]) -> Optional[concurrent.futures.Future]:
        """Handle ``request`` without blocking; ``respond`` is called exactly once.

        Returns a Future for dispatched POSTs (resolving to the Response
        once it has been delivered), or None when the response was
        written immediately.
        """
        responder = respond if isinstance(respond, Responder) else Responder(respond)

        immediate = self._immediate_response(request)
        if immediate is not None:
            responder.respond(immediate)
            return None

        self.registry.seal()
        name = self.command_name(request.uri)
        args = parse_body(request.body)

        loop = self.start()
        future = asyncio.run_coroutine_threadsafe(self._serve(name, args, responder), loop)
        with self._state_lock:
            self._pending.add(future)

        def finished(fut: concurrent.futures.Future) -> None:
            self._forget(fut)
            # A task cancelled before it ever ran still owes the page an answer.
            if fut.cancelled() and not responder.responded:
                cancelled = DispatchResult(command=name, error=f"Command cancelled: {name}")
                self._deliver(responder, json_response(cancelled))

        future.add_done_callback(finished)
        return future

    def _immediate_response(self, request: Request) -> Optional[Response]:
        method = request.method.upper()
        if method == "OPTIONS":
            return preflight_response()
        if method != "POST":
            return method_not_allowed_response()
        return None

    async def _serve(self, name: str, args: Any, responder: Responder) -> Response:
        result = await self._dispatch_limited(name, args)
        response = json_response(result)
        self._deliver(responder, response)
        return response

    @staticmethod
    def _deliver(responder: Responder, response: Response) -> None:
        try:
            responder.respond(response)
        except Exception as e:
            logger.error(f"Responder failed: {e}", exc_info=True)

    async def _dispatch_limited(self, name: str, args: Any) -> DispatchResult:
        if self.max_concurrent is None:
            return await self.dispatcher.dispatch(name, args)
        async with self._limiter():
            return await self.dispatcher.dispatch(name, args)

    def _limiter(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        with self._state_lock:
            limiter = self._limiters.get(loop)
            if limiter is None:
                limiter = self._limiters[loop] = asyncio.Semaphore(self.max_concurrent)
            return limiter

    def _forget(self, future: concurrent.futures.Future) -> None:
        with self._state_lock:
            self._pending.discard(future)

    # ─── Worker loop lifecycle ──────────────────────────────────────

    @property
    def in_flight(self) -> int:
        with self._state_lock:
            return len(self._pending)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> asyncio.AbstractEventLoop:
        """Start the worker loop if needed and return it."""
        with self._state_lock:
            if self._loop is not None and self.running:
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def run():
                asyncio.set_event_loop(loop)
                loop.call_soon(ready.set)
                loop.run_forever()
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()

            thread = threading.Thread(target=run, name="webview-commands-dispatch", daemon=True)
            thread.start()
            ready.wait()
            self._loop = loop
            self._thread = thread
        self.registry.seal()
        logger.info(f"Dispatch loop started for scheme '{self.scheme}'")
        return loop

    def close(self, cancel_pending: bool = False, timeout: Optional[float] = None) -> None:
        """Stop the worker loop.

        Waits for in-flight dispatches unless ``cancel_pending`` is set,
        in which case they are cancelled and answered with an error
        envelope first.
        """
        with self._state_lock:
            loop, thread = self._loop, self._thread
            pending = list(self._pending)
            self._loop = None
            self._thread = None
        if loop is None or thread is None:
            return

        if cancel_pending and pending:
            cancelled = asyncio.run_coroutine_threadsafe(_cancel_tasks(), loop)
            cancelled.result(timeout)
        concurrent.futures.wait(pending, timeout=timeout)

        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        logger.info(f"Dispatch loop stopped for scheme '{self.scheme}'")

    def __enter__(self) -> "TransportAdapter":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
