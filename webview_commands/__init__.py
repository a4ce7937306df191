"""
webview-commands
================

Named backend commands for JavaScript user interfaces running in a
webview. The page calls a command with an HTTP-shaped request on a
custom scheme and gets JSON back:

    const res = await fetch("app://greet", {
        method: "POST",
        headers: {"Content-Type": "application/json"},
        body: JSON.stringify({name: "Alice"}),
    });
    await res.json();   // {"message": "Hello, Alice!"}
                        // or {"error": "..."} on failure

Architecture Overview
---------------------
    ┌──────────────┐  request   ┌────────────────────┐
    │  Page (JS)    │──────────►│  TransportAdapter   │  OPTIONS → 204
    │  fetch()      │◄──────────│  (host UI thread)   │  GET etc → 405
    └──────────────┘  response  └─────────┬──────────┘
                                          │ POST, on worker loop
                                ┌─────────▼──────────┐
                                │  resolve_command_   │  app://mycommands/greet/
                                │  name()             │    → "mycommands/greet"
                                └─────────┬──────────┘
                                ┌─────────▼──────────┐
                                │  CommandDispatcher  │──► CommandRegistry.lookup()
                                └─────────┬──────────┘
                                          ▼
                         handler(args) → value   or   {"error": ...}

Registering Commands
--------------------
Build one registry at startup, fill it, and hand it to the transport.
Functions may be sync or async; the caller cannot tell the difference.

    from pydantic import BaseModel
    from webview_commands import CommandRegistry, CommandError

    registry = CommandRegistry()

    class GreetArgs(BaseModel):
        name: str

    @registry.command()
    def greet(args: GreetArgs) -> dict:
        return {"message": f"Hello, {args.name}!"}

    @registry.command(name="files/read")
    async def read_file(path: str) -> str:
        if not path:
            raise CommandError("path is required")
        ...

    class MyCommands:
        def greet(self, args: GreetArgs) -> dict: ...

    registry.register_service(MyCommands())      # "mycommands/greet"

Hooking Up a Host
-----------------
Host webview toolkits deliver custom-protocol requests on their UI
thread with a callback for the reply. Wrap each one in a Request and
let the adapter answer:

    adapter = TransportAdapter(registry, scheme="app")

    def on_custom_protocol(method, uri, body, reply):
        adapter.handle(Request(method, uri, body),
                       lambda r: reply(r.status, r.headers, r.body))

For development in an ordinary browser, ``python -m webview_commands``
serves the same protocol over HTTP (see web_bridge.py).

Module Structure
----------------
    webview_commands/
    ├── __init__.py        ← This file. Public API.
    ├── registry.py        ← CommandRegistry, Command.
    ├── resolver.py        ← Address → command name.
    ├── handlers.py        ← Lifting functions and services into handlers.
    ├── dispatcher.py      ← CommandDispatcher, DispatchResult, CommandError.
    ├── transport.py       ← TransportAdapter, Request, Response.
    ├── web_bridge.py      ← FastAPI app serving the protocol over HTTP.
    ├── config_manager.py  ← YAML + CLI configuration.
    ├── demo.py            ← greet, mycommands/greet, mycommands/fetch.
    └── __main__.py        ← Command line entry point.
"""

from webview_commands.dispatcher import (
    ArgumentDecodeError,
    CommandDispatcher,
    CommandError,
    DispatchResult,
)
from webview_commands.handlers import lift
from webview_commands.registry import (
    Command,
    CommandRegistry,
    DuplicateCommandError,
    RegistryClosedError,
)
from webview_commands.resolver import resolve_command_name, resolve_uri
from webview_commands.transport import (
    Request,
    Responder,
    ResponderError,
    Response,
    TransportAdapter,
)

__version__ = "0.1.0"

__all__ = [
    'ArgumentDecodeError',
    'Command',
    'CommandDispatcher',
    'CommandError',
    'CommandRegistry',
    'DispatchResult',
    'DuplicateCommandError',
    'RegistryClosedError',
    'Request',
    'Responder',
    'ResponderError',
    'Response',
    'TransportAdapter',
    'lift',
    'resolve_command_name',
    'resolve_uri',
]
