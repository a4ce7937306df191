"""
Command Registry
================

The lookup table behind every webview command.

Role in the System
------------------
The registry is filled once at startup, either with explicit
``register(name, handler)`` calls or through ``command()`` and
``register_service()``, which lift plain functions with
``webview_commands.handlers``, and then sealed. From that point on it
is read-only, so the transport's worker loop and any number of
in-flight dispatches can look commands up without locking.

    startup:   register("greet", greet) ──► registry (open)
               register("mycommands/greet", ...)
                              │
                           seal()
                              ▼
    runtime:   lookup("greet") ──► Command(name, handler)

Design Decisions
----------------
- Names are matched exactly. "Greet" and "greet" are different
  commands; the resolver is responsible for normalizing addresses.
- Registering a name twice is an error by default. Build order is not
  something a caller should rely on, so a silent override would make
  the winner depend on import order.
- With ``allow_duplicates=True`` the duplicate is kept on record and
  logged, and lookup keeps returning the first registration.
- There is no unregister. Commands live as long as the registry.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional

logger = logging.getLogger(__name__)

# A handler takes one JSON value and returns a JSON value, or an
# awaitable resolving to one. Failures are raised as CommandError.
Handler = Callable[[Any], Any]


class DuplicateCommandError(ValueError):
    """A command name was registered more than once."""


class RegistryClosedError(RuntimeError):
    """Registration was attempted after the registry was sealed."""


@dataclass(frozen=True)
class Command:
    """A named handler entry.

    Attributes
    ----------
    name : str
        The canonical command name, e.g. ``"greet"`` or
        ``"mycommands/greet"``.
    handler : Handler
        Called with the decoded JSON payload.
    description : str
        One-line help text for listings. May be empty.
    """
    name: str
    handler: Handler
    description: str = ""


class CommandRegistry:
    """Append-only table of commands, sealed before first dispatch.

    Usage
    -----
        registry = CommandRegistry()

        @registry.command()
        def greet(args: GreetArgs) -> GreetReply:
            ...

        registry.register_service(MyCommands())
        registry.seal()

        registry.lookup("greet")          # Command(...)
        registry.lookup("mycommands/greet")
    """

    def __init__(self, allow_duplicates: bool = False):
        self.allow_duplicates = allow_duplicates
        self._entries: list[Command] = []
        self._by_name: dict[str, Command] = {}
        self._sealed = False
        self._lock = threading.Lock()

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, Handler]], **kwargs) -> "CommandRegistry":
        """Build a registry from ``(name, handler)`` pairs, in order."""
        registry = cls(**kwargs)
        for name, handler in pairs:
            registry.register(name, handler)
        return registry

    # ─── Registration ───────────────────────────────────────────────

    def register(self, name: str, handler: Handler, description: str = "") -> Command:
        """Register ``handler`` under ``name``.

        Parameters
        ----------
        name : str
            Non-empty command name.
        handler : Handler
            Callable taking the JSON payload.
        description : str
            Optional help text.

        Returns
        -------
        Command
            The stored entry. When duplicates are allowed and ``name``
            was already taken, this is still the new entry, but lookup
            will keep returning the first one.

        Raises
        ------
        RegistryClosedError
            If the registry has been sealed.
        DuplicateCommandError
            If ``name`` is taken and duplicates are not allowed.
        ValueError
            If ``name`` is empty.
        TypeError
            If ``handler`` is not callable.
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Command name must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"Handler for command '{name}' is not callable")

        command = Command(name=name, handler=handler, description=description)

        with self._lock:
            if self._sealed:
                raise RegistryClosedError(
                    f"Cannot register '{name}': registry is sealed"
                )
            existing = self._by_name.get(name)
            if existing is not None:
                if not self.allow_duplicates:
                    raise DuplicateCommandError(
                        f"Command name collision: '{name}' is already registered"
                    )
                logger.warning(
                    f"Duplicate command '{name}' registered; "
                    f"the first registration stays in effect"
                )
            else:
                self._by_name[name] = command
            self._entries.append(command)

        logger.debug(f"Registered command: {name}")
        return command

    def command(self, name: Optional[str] = None, offload: bool = True):
        """Decorator form of :meth:`register` for plain functions.

        The function is lifted (see ``webview_commands.handlers.lift``)
        so its annotated argument is decoded from JSON and its return
        value encoded back. Returns the original function unchanged.
        """
        from webview_commands.handlers import command_name_for, lift, summary_line

        def decorator(func):
            self.register(
                name or command_name_for(func),
                lift(func, offload=offload),
                description=summary_line(func),
            )
            return func

        return decorator

    def register_service(self, instance: Any, name: Optional[str] = None,
                         offload: bool = True) -> list[Command]:
        """Register each public method of ``instance`` as ``service/method``."""
        from webview_commands.handlers import service_commands

        return [
            self.register(cmd_name, handler, description=description)
            for cmd_name, handler, description in service_commands(instance, name, offload=offload)
        ]

    def seal(self) -> None:
        """Close the registry to further registration. Idempotent."""
        with self._lock:
            if not self._sealed:
                self._sealed = True
                logger.debug(f"Registry sealed with {len(self._by_name)} command(s)")

    @property
    def sealed(self) -> bool:
        return self._sealed

    # ─── Lookup ─────────────────────────────────────────────────────

    def lookup(self, name: str) -> Optional[Command]:
        """Exact, case-sensitive lookup. First registration wins."""
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return sorted(self._by_name)

    def list_commands(self) -> list[tuple[str, str]]:
        """Return (name, description) for all commands, sorted by name."""
        return sorted(
            ((cmd.name, cmd.description) for cmd in self._by_name.values()),
            key=lambda x: x[0],
        )

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    def __iter__(self) -> Iterator[Command]:
        return iter(list(self._entries))
