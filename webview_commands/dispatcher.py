"""
Command Dispatcher
==================

Looks a command up, runs its handler with the JSON payload and turns
whatever happens into a DispatchResult.

    dispatch("greet", {"name": "Alice"})
                  ↓
    registry.lookup("greet") → Command
                  ↓
    handler({"name": "Alice"})  ── sync: executor thread → value
                                └─ async: awaited on the loop
                  ↓
    DispatchResult(value={"message": "Hello, Alice!"})

Sync and async handlers look the same from here. Coroutine functions
are awaited on the loop; any other callable runs in the loop's default
executor, and its result is awaited too if it turns out to be
awaitable. A blocking sync handler therefore never stalls other
commands, and the timeout applies to it like any other.

Failure modes all end up as ``DispatchResult.error``:

- no such command          → "Unknown command: <name>"
- CommandError raised      → its message, unchanged
- ArgumentDecodeError      → the decoder's description
- timeout                  → "Command timed out after <t>s: <name>"
- any other exception      → logged with traceback, exception text

Cancellation is not converted; it propagates to whoever is awaiting.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Optional

from webview_commands.registry import CommandRegistry

logger = logging.getLogger(__name__)

_USE_DEFAULT = object()


class CommandError(Exception):
    """Raised by a handler to report a failure to the caller.

    The message is sent to the page as ``{"error": <message>}``.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ArgumentDecodeError(CommandError):
    """The JSON payload could not be decoded into the handler's argument type."""


@dataclass
class DispatchResult:
    """Outcome of one dispatch.

    Attributes
    ----------
    command : str
        The name that was dispatched.
    value : Any
        JSON-compatible return value. Meaningless when ``error`` is set.
    error : str or None
        Failure description, or None on success.
    """
    command: str
    value: Any = None
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_envelope(self) -> Any:
        """The JSON body sent back to the page."""
        if self.is_error:
            return {"error": self.error}
        return self.value


class CommandDispatcher:
    """Runs registered commands.

    Parameters
    ----------
    registry : CommandRegistry
        Where commands are looked up. The dispatcher never registers.
    timeout : float or None
        Default per-dispatch timeout in seconds. None waits forever.
    """

    def __init__(self, registry: CommandRegistry, timeout: Optional[float] = None):
        self.registry = registry
        self.timeout = timeout

    async def dispatch(self, command_name: str, args: Any = None,
                       timeout: Any = _USE_DEFAULT) -> DispatchResult:
        """Dispatch ``command_name`` with ``args``.

        ``timeout`` overrides the dispatcher default for this call;
        pass None to disable it.
        """
        if timeout is _USE_DEFAULT:
            timeout = self.timeout

        command = self.registry.lookup(command_name)
        if command is None:
            logger.warning(f"Unknown command received: {command_name}")
            return DispatchResult(command=command_name, error=f"Unknown command: {command_name}")

        try:
            if timeout is None:
                value = await self._invoke(command.handler, args)
            else:
                value = await asyncio.wait_for(self._invoke(command.handler, args), timeout)
        except CommandError as e:
            logger.debug(f"Command '{command_name}' reported: {e}")
            return DispatchResult(command=command_name, error=str(e))
        except asyncio.TimeoutError as e:
            if timeout is None:
                # Raised by the handler itself, not by wait_for.
                logger.error(f"Handler error for '{command_name}': {e!r}", exc_info=True)
                return DispatchResult(command=command_name, error=str(e) or type(e).__name__)
            logger.warning(f"Command '{command_name}' timed out after {timeout}s")
            return DispatchResult(
                command=command_name,
                error=f"Command timed out after {timeout}s: {command_name}",
            )
        except Exception as e:
            logger.error(f"Handler error for '{command_name}': {e}", exc_info=True)
            return DispatchResult(command=command_name, error=str(e) or type(e).__name__)

        return DispatchResult(command=command_name, value=value)

    @staticmethod
    async def _invoke(handler, args: Any) -> Any:
        if _is_coroutine_handler(handler):
            return await handler(args)
        # Plain callables run in the default executor, off the loop.
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, handler, args)
        if inspect.isawaitable(result):
            result = await result
        return result


def _is_coroutine_handler(handler) -> bool:
    if inspect.iscoroutinefunction(handler):
        return True
    return inspect.iscoroutinefunction(getattr(handler, "__call__", None))
