#!/usr/bin/env python3
"""
webview-commands entry point.

    python -m webview_commands [options]

Loads the configured command modules into a fresh registry, then either
lists the commands (--list) or serves them over the HTTP bridge.
"""

import importlib
import logging
import os
import sys

from webview_commands.config_manager import CommandsConfig, setup_configuration, setup_logging
from webview_commands.registry import CommandRegistry

logger = logging.getLogger(__name__)


def load_command_modules(registry: CommandRegistry, modules) -> None:
    """Import each module and call its register_commands(registry).

    Raises
    ------
    ImportError
        If a module cannot be imported.
    AttributeError
        If a module has no register_commands function.
    """
    for module_name in modules:
        module = importlib.import_module(module_name)
        register = getattr(module, "register_commands", None)
        if not callable(register):
            raise AttributeError(f"Module '{module_name}' does not define register_commands(registry)")
        register(registry)
        logger.info(f"Loaded commands from {module_name}")


def build_registry(config: CommandsConfig) -> CommandRegistry:
    registry = CommandRegistry(allow_duplicates=config.dispatch.allow_duplicate_names)
    load_command_modules(registry, config.commands.modules)
    registry.seal()
    return registry


def main(argv=None) -> int:
    config, should_exit, _manager, args = setup_configuration(argv)
    if should_exit:
        created = args.create_config and os.path.exists(args.create_config)
        return 0 if created else 1

    setup_logging(config.console)

    try:
        registry = build_registry(config)
    except (ImportError, AttributeError, ValueError) as e:
        logger.error(f"Could not load commands: {e}")
        return 1

    if args.list:
        print(f"Commands for {config.protocol.scheme}://")
        for name, description in registry.list_commands():
            print(f"  {name:<30} {description}")
        return 0

    from webview_commands.web_bridge import run_web_server

    try:
        run_web_server(registry, config)
    except KeyboardInterrupt:
        print("\nStopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
