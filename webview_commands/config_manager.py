#!/usr/bin/env python3
"""
Configuration system for webview-commands
Supports YAML files, CLI overrides, and programmatic access
"""

import argparse
import logging
import re
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


_SCHEME_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9+.\-]*$')


@dataclass
class ProtocolConfig:
    """Custom protocol settings"""
    scheme: str = "app"
    windows_host_form: bool = True  # accept http://<scheme>.<command>

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scheme': self.scheme,
            'windows_host_form': self.windows_host_form,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProtocolConfig':
        return cls(
            scheme=data.get('scheme', 'app'),
            windows_host_form=data.get('windows_host_form', True),
        )


@dataclass
class DispatchConfig:
    """Dispatch limits. None means unlimited."""
    max_concurrent: Optional[int] = None
    timeout_seconds: Optional[float] = None
    allow_duplicate_names: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'max_concurrent': self.max_concurrent,
            'timeout_seconds': self.timeout_seconds,
            'allow_duplicate_names': self.allow_duplicate_names,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DispatchConfig':
        return cls(
            max_concurrent=data.get('max_concurrent'),
            timeout_seconds=data.get('timeout_seconds'),
            allow_duplicate_names=data.get('allow_duplicate_names', False),
        )


@dataclass
class ServerConfig:
    """HTTP bridge settings"""
    host: str = "127.0.0.1"
    port: int = 8000

    def to_dict(self) -> Dict[str, Any]:
        return {'host': self.host, 'port': self.port}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServerConfig':
        return cls(
            host=data.get('host', '127.0.0.1'),
            port=data.get('port', 8000),
        )


@dataclass
class ConsoleConfig:
    """Console messages logging level configuration"""
    verbose: bool = False
    quiet: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'verbose': self.verbose, 'quiet': self.quiet}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConsoleConfig':
        return cls(
            verbose=data.get('verbose', False),
            quiet=data.get('quiet', False),
        )


@dataclass
class ModulesConfig:
    """Python modules that register commands at startup"""
    modules: List[str] = field(default_factory=lambda: ["webview_commands.demo"])

    def to_dict(self) -> Dict[str, Any]:
        return {'modules': list(self.modules)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ModulesConfig':
        modules = data.get('modules')
        if modules is None:
            return cls()
        return cls(modules=list(modules))


@dataclass
class CommandsConfig:
    """Complete configuration for webview-commands"""
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    console: ConsoleConfig = field(default_factory=ConsoleConfig)
    commands: ModulesConfig = field(default_factory=ModulesConfig)

    config_version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization"""
        return {
            'config_version': self.config_version,
            'protocol': self.protocol.to_dict(),
            'dispatch': self.dispatch.to_dict(),
            'server': self.server.to_dict(),
            'console': self.console.to_dict(),
            'commands': self.commands.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CommandsConfig':
        """Create from dictionary (YAML loading). Missing sections keep defaults."""
        return cls(
            protocol=ProtocolConfig.from_dict(data.get('protocol') or {}),
            dispatch=DispatchConfig.from_dict(data.get('dispatch') or {}),
            server=ServerConfig.from_dict(data.get('server') or {}),
            console=ConsoleConfig.from_dict(data.get('console') or {}),
            commands=ModulesConfig.from_dict(data.get('commands') or {}),
            config_version=str(data.get('config_version', '1.0')),
        )


class ConfigurationManager:
    """
    Manages configuration loading, merging, and validation
    """

    def __init__(self, config_file: str = "webview_commands.yaml"):
        self.config_file = config_file
        self.config: Optional[CommandsConfig] = None
        self.config_file_path: Optional[Path] = None

        self.logger = logging.getLogger(__name__)

        # Standard config file locations (in order of preference)
        self.config_search_paths = [
            Path.cwd() / "webview_commands.yaml",
            Path.cwd() / "config" / "webview_commands.yaml",
            Path.home() / ".config" / "webview_commands" / "config.yaml",
            Path("/etc/webview_commands/config.yaml"),
        ]

    def load_config(self, config_file: Optional[str] = None) -> CommandsConfig:
        """
        Load configuration from file with fallback chain

        Args:
            config_file: Specific config file path, or None for auto-discovery

        Returns:
            Loaded configuration object (defaults if nothing usable was found)
        """
        self.config = None
        if config_file:
            config_path = Path(config_file)
            if config_path.exists():
                self.config = self._load_yaml_file(config_path)
                self.config_file_path = config_path
                self.logger.info(f"Loaded config from: {config_path}")
            else:
                self.logger.warning(f"Config file not found: {config_path}")
                self.logger.info("Using default configuration")
        else:
            for path in self.config_search_paths:
                if path.exists():
                    self.config = self._load_yaml_file(path)
                    self.config_file_path = path
                    self.logger.info(f"Auto-discovered config: {path}")
                    break
            else:
                self.logger.info("No config file found, using defaults")

        if self.config is None:
            self.config = CommandsConfig()
        return self.config

    def _load_yaml_file(self, file_path: Path) -> CommandsConfig:
        """Load configuration from YAML file"""
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                yaml_data = yaml.safe_load(f) or {}
            if not isinstance(yaml_data, dict):
                self.logger.error(f"Config file {file_path} does not contain a mapping")
                return CommandsConfig()
            return CommandsConfig.from_dict(yaml_data)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            self.logger.error(f"Error loading config file {file_path}: {e}")
            return CommandsConfig()

    def merge_cli_args(self, args: argparse.Namespace) -> CommandsConfig:
        """
        Merge CLI arguments into configuration (CLI takes precedence)

        Args:
            args: Parsed command line arguments

        Returns:
            Updated configuration
        """
        if self.config is None:
            self.config = CommandsConfig()

        if getattr(args, 'scheme', None):
            self.config.protocol.scheme = args.scheme
        if getattr(args, 'host', None):
            self.config.server.host = args.host
        if getattr(args, 'port', None) is not None:
            self.config.server.port = args.port
        if getattr(args, 'max_concurrent', None) is not None:
            self.config.dispatch.max_concurrent = args.max_concurrent
        if getattr(args, 'timeout', None) is not None:
            self.config.dispatch.timeout_seconds = args.timeout
        if getattr(args, 'modules', None):
            self.config.commands.modules = list(args.modules)
        if getattr(args, 'verbose', False):
            self.config.console.verbose = True
        if getattr(args, 'quiet', False):
            self.config.console.quiet = True

        return self.config

    def validate_config(self) -> tuple[bool, list[str]]:
        """
        Validate configuration for common issues

        Returns:
            (is_valid, list_of_errors)
        """
        errors = []
        config = self.config or CommandsConfig()

        if not isinstance(config.protocol.scheme, str) or not _SCHEME_PATTERN.match(config.protocol.scheme):
            errors.append(f"Invalid protocol scheme: {config.protocol.scheme!r}")

        port = config.server.port
        if not isinstance(port, int) or not (1 <= port <= 65535):
            errors.append(f"Invalid server port: {port}")

        max_concurrent = config.dispatch.max_concurrent
        if max_concurrent is not None and (not isinstance(max_concurrent, int) or max_concurrent < 1):
            errors.append(f"Invalid max_concurrent: {max_concurrent}. Must be at least 1 or null")

        timeout = config.dispatch.timeout_seconds
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            errors.append(f"Invalid timeout_seconds: {timeout}. Must be positive or null")

        if config.console.verbose and config.console.quiet:
            errors.append("Console verbose and quiet cannot both be set")

        if not all(isinstance(m, str) and m for m in config.commands.modules):
            errors.append("Command modules must be non-empty module names")

        return len(errors) == 0, errors

    def get_config(self) -> CommandsConfig:
        """Get a copy of the current configuration"""
        return deepcopy(self.config)

    def save_config(self, filename: str) -> bool:
        """Save current configuration to a YAML file"""
        if self.config is None:
            return False
        try:
            with open(filename, 'w', encoding='utf-8') as f:
                yaml.dump(self.config.to_dict(), f, default_flow_style=False, indent=2, sort_keys=False)
            self.logger.info(f"Configuration saved to {filename}")
            return True
        except OSError as e:
            self.logger.error(f"Error saving config to {filename}: {e}")
            return False

    def create_sample_config(self, filename: str) -> bool:
        """Write a commented sample configuration file"""
        try:
            Path(filename).write_text(SAMPLE_CONFIG, encoding='utf-8')
            return True
        except OSError as e:
            self.logger.error(f"Error creating sample config {filename}: {e}")
            return False


SAMPLE_CONFIG = """\
# webview-commands configuration
config_version: "1.0"

# Pages reach commands at <scheme>://<command>, e.g. app://greet.
# windows_host_form also accepts http://<scheme>.<command> for webviews
# that cannot load custom schemes.
protocol:
  scheme: app
  windows_host_form: true

# null means unlimited
dispatch:
  max_concurrent: null
  timeout_seconds: null
  allow_duplicate_names: false

# HTTP bridge (python -m webview_commands)
server:
  host: 127.0.0.1
  port: 8000

console:
  verbose: false
  quiet: false

# Each module must define register_commands(registry)
commands:
  modules:
    - webview_commands.demo
"""


def setup_logging(console: ConsoleConfig) -> None:
    """Configure the root logger from the console settings"""
    if console.verbose:
        level = logging.DEBUG
    elif console.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')


def create_argument_parser() -> argparse.ArgumentParser:
    """Argument parser for the webview-commands server"""
    parser = argparse.ArgumentParser(
        prog='webview-commands',
        description='Serve registered webview commands over HTTP',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                 # Serve the demo commands on 127.0.0.1:8000
  %(prog)s --module myapp.commands         # Serve commands from myapp.commands
  %(prog)s --list                          # List registered commands
  %(prog)s -c my_config.yaml --port 9000   # Use specific config file
  %(prog)s --create-config sample.yaml     # Create sample config file

Configuration:
  Configuration is loaded in this order (later overrides earlier):
  1. Built-in defaults
  2. Configuration file (YAML)
  3. Command line arguments

  Config file search order:
  - webview_commands.yaml (current directory)
  - config/webview_commands.yaml
  - ~/.config/webview_commands/config.yaml
  - /etc/webview_commands/config.yaml
        """
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument('-c', '--config', help='Configuration file path')
    config_group.add_argument('--create-config', metavar='FILE', help='Write a sample configuration file and exit')
    config_group.add_argument('--save-config', metavar='FILE', help='Save the effective configuration to FILE')

    commands_group = parser.add_argument_group('Commands')
    commands_group.add_argument(
        '--module', dest='modules', action='append', metavar='MODULE',
        help='Module exposing register_commands(registry); repeatable'
    )
    commands_group.add_argument('--list', action='store_true', help='List registered commands and exit')

    dispatch_group = parser.add_argument_group('Dispatch')
    dispatch_group.add_argument('--scheme', help='Custom protocol scheme name')
    dispatch_group.add_argument('--max-concurrent', type=int, help='Maximum concurrently running commands')
    dispatch_group.add_argument('--timeout', type=float, help='Per-command timeout in seconds')

    server_group = parser.add_argument_group('Server')
    server_group.add_argument('--host', help='HTTP bridge bind address')
    server_group.add_argument('--port', type=int, help='HTTP bridge port')

    console_group = parser.add_argument_group('Console')
    verbosity = console_group.add_mutually_exclusive_group()
    verbosity.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    verbosity.add_argument('-q', '--quiet', action='store_true', help='Warnings and errors only')

    return parser


def setup_configuration(argv=None) -> tuple[Optional[CommandsConfig], bool, Optional[ConfigurationManager], argparse.Namespace]:
    """
    Setup configuration system with CLI integration

    Args:
        argv: Command line arguments (None for sys.argv)

    Returns:
        (config_object, should_exit, config_manager, parsed_args)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if args.create_config:
        manager = ConfigurationManager()
        if manager.create_sample_config(args.create_config):
            print(f"Sample configuration created: {args.create_config}")
            print(f"Edit the file and run again with: -c {args.create_config}")
        return None, True, None, args

    manager = ConfigurationManager()
    manager.load_config(args.config)
    config = manager.merge_cli_args(args)

    is_valid, errors = manager.validate_config()
    if not is_valid:
        print("Configuration errors:")
        for error in errors:
            print(f"  ✗ {error}")
        return None, True, None, args

    if args.save_config:
        if manager.save_config(args.save_config):
            print(f"Configuration saved to: {args.save_config}")

    return config, False, manager, args
