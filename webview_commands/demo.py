#!/usr/bin/env python3
"""
Demo commands.

Registers the same commands the examples in the README use, one of
each shape:

    greet              sync function, typed argument and reply
    mycommands/greet   sync method on a service object
    mycommands/fetch   async method that suspends before replying

Serve them with:

    python -m webview_commands --module webview_commands.demo

and call from the page:

    const res = await fetch("app://greet", {
        method: "POST",
        headers: {"Content-Type": "application/json"},
        body: JSON.stringify({name: "Alice"}),
    });
    const reply = await res.json();  // {message: "Hello, Alice!"}
"""

import asyncio
import logging

from pydantic import BaseModel

from webview_commands.dispatcher import CommandError
from webview_commands.registry import CommandRegistry

logger = logging.getLogger(__name__)


class GreetArgs(BaseModel):
    name: str


class GreetReply(BaseModel):
    message: str


def greet(args: GreetArgs) -> GreetReply:
    """Greet someone by name"""
    logger.debug(f"greet called with {args.name!r}")
    return GreetReply(message=f"Hello, {args.name}!")


class MyCommands:
    """Service whose public methods become mycommands/<method>."""

    def greet(self, args: GreetArgs) -> GreetReply:
        """Greet someone, informally"""
        return GreetReply(message=f"hi {args.name}")

    async def fetch(self, item_id: int) -> str:
        """Fetch an item by id"""
        if item_id < 0:
            raise CommandError(f"No item with id {item_id}")
        await asyncio.sleep(0)
        return f"Fetched {item_id}"


def register_commands(registry: CommandRegistry) -> None:
    registry.command()(greet)
    registry.register_service(MyCommands())


def build_demo_registry(**kwargs) -> CommandRegistry:
    registry = CommandRegistry(**kwargs)
    register_commands(registry)
    return registry
