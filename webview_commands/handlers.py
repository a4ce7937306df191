"""
Handler Lifting
===============

Wraps ordinary Python callables into the uniform handler shape the
dispatcher expects: one JSON value in, one JSON value (or awaitable)
out, failures raised as CommandError.

    def greet(args: GreetArgs) -> GreetReply: ...
    async def fetch(item_id: int) -> str: ...

    lift(greet)   # JSON → GreetArgs → greet → GreetReply → JSON
    lift(fetch)   # JSON → int → await fetch → str → JSON

Argument decoding
-----------------
The single parameter's annotation drives decoding through a pydantic
TypeAdapter, so models, dataclasses, TypedDicts, lists and scalars all
work. An unannotated (or ``Any``) parameter receives the raw JSON
value. Zero-parameter functions ignore the payload. A decode failure
raises ArgumentDecodeError carrying pydantic's message.

Return encoding
---------------
The return annotation, if there is one, is used to dump the value in
JSON mode; otherwise pydantic's ``to_jsonable_python`` handles it.
Values that cannot be encoded raise CommandError.

Execution
---------
Sync functions run in the loop's default executor unless lifted with
``offload=False``; coroutine functions are awaited on the loop.

Services
--------
``service_commands(instance)`` yields one lifted handler per public
method, named ``<service>/<method>``, where the service name defaults
to the lowercased class name:

    class MyCommands:
        def greet(self, args: GreetArgs) -> GreetReply: ...

    registry.register_service(MyCommands())   # "mycommands/greet"
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import typing
from typing import Any, Callable, Iterator, Optional

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from webview_commands.dispatcher import ArgumentDecodeError, CommandError

logger = logging.getLogger(__name__)

_EMPTY = inspect.Parameter.empty


def command_name_for(func: Callable) -> str:
    """Default command name: the function's name, lowercased."""
    return func.__name__.lower()


def summary_line(func: Callable) -> str:
    """First line of the docstring, or ""."""
    doc = inspect.getdoc(func)
    return doc.splitlines()[0].strip() if doc else ""


def _type_hints(func: Callable) -> dict[str, Any]:
    try:
        return typing.get_type_hints(func)
    except Exception as e:
        # Unresolvable forward references fall back to untyped handling.
        logger.debug(f"Could not resolve annotations of {func!r}: {e}")
        return {}


def _argument_adapter(func: Callable) -> tuple[int, Optional[TypeAdapter]]:
    """Return (parameter count, adapter for the parameter or None)."""
    params = [
        p for p in inspect.signature(func).parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    required = [p for p in params if p.default is _EMPTY]
    if len(required) > 1:
        raise TypeError(
            f"Command handler {func.__qualname__} must take at most one argument, "
            f"got {len(required)}"
        )
    if not params:
        return 0, None

    hint = _type_hints(func).get(params[0].name, Any)
    if hint is Any:
        return 1, None
    return 1, TypeAdapter(hint)


def _return_adapter(func: Callable) -> Optional[TypeAdapter]:
    hint = _type_hints(func).get("return", _EMPTY)
    if hint in (_EMPTY, Any):
        return None
    if hint is None or hint is type(None):
        return None
    return TypeAdapter(hint)


def lift(func: Callable, offload: bool = True) -> Callable[[Any], Any]:
    """Wrap ``func`` as a JSON-in/JSON-out coroutine handler.

    Parameters
    ----------
    func : callable
        Sync or async function taking zero or one argument.
    offload : bool
        Run a sync ``func`` in the loop's default executor (the
        default). Pass False for quick, non-blocking functions that
        may run inline on the loop. Has no effect on coroutine
        functions.

    Raises
    ------
    TypeError
        If ``func`` needs more than one argument.
    """
    arity, arg_adapter = _argument_adapter(func)
    ret_adapter = _return_adapter(func)
    is_async = inspect.iscoroutinefunction(func)

    def decode(args: Any) -> tuple:
        if arity == 0:
            return ()
        if arg_adapter is None:
            return (args,)
        try:
            return (arg_adapter.validate_python(args),)
        except ValidationError as e:
            raise ArgumentDecodeError(str(e)) from e

    def encode(value: Any) -> Any:
        try:
            if ret_adapter is not None:
                return ret_adapter.dump_python(value, mode="json")
            return to_jsonable_python(value)
        except (PydanticSerializationError, ValueError, TypeError) as e:
            raise CommandError(f"Could not encode result of {func.__qualname__}: {e}") from e

    @functools.wraps(func)
    async def handler(args: Any) -> Any:
        call_args = decode(args)
        if is_async:
            value = await func(*call_args)
        elif offload:
            loop = asyncio.get_running_loop()
            value = await loop.run_in_executor(None, lambda: func(*call_args))
        else:
            value = func(*call_args)
        return encode(value)

    return handler


def service_commands(instance: Any, name: Optional[str] = None,
                     offload: bool = True) -> Iterator[tuple[str, Callable[[Any], Any], str]]:
    """Yield (command name, handler, description) for each public method of ``instance``.

    Methods are taken from the instance's class in definition order;
    names starting with "_" are skipped.
    """
    service = name or type(instance).__name__.lower()
    seen = set()
    for klass in type(instance).__mro__:
        if klass is object:
            continue
        for attr, value in vars(klass).items():
            if attr.startswith("_") or attr in seen:
                continue
            if not inspect.isfunction(value):
                continue
            seen.add(attr)
            method = getattr(instance, attr)
            yield f"{service}/{attr}", lift(method, offload=offload), summary_line(method)
