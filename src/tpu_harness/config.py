"""
Configuration System for the TPU Harness

Dataclass configuration for the accelerator server process, the session
target and the compiler, plus environment-based construction for Colab
and CI runs.
"""

import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from .exceptions import ConfigurationError

DEFAULT_TARGET = "grpc://localhost:8470"
DEFAULT_SERVER_COMMAND = "xrt_server"

# Environment variables
ENV_TARGET = "TPU_HARNESS_TARGET"
ENV_SERVER = "TPU_HARNESS_SERVER"
ENV_LOG_LEVEL = "TPU_HARNESS_LOG_LEVEL"
ENV_JSON_LOGS = "TPU_HARNESS_JSON_LOGS"
ENV_COLAB_TPU_ADDR = "COLAB_TPU_ADDR"
ENV_COLAB_GPU = "COLAB_GPU"


class TargetScheme(Enum):
    """Supported session target schemes."""
    GRPC = "grpc"        # Remote execution service (xrt_server)
    LOCAL = "local"      # In-process torch device, no server


@dataclass(frozen=True)
class Target:
    """Parsed session target, e.g. ``grpc://localhost:8470`` or ``local://cpu``."""
    scheme: TargetScheme
    host: str
    port: Optional[int] = None

    @classmethod
    def parse(cls, target: str) -> "Target":
        if "://" not in target:
            raise ConfigurationError("target", target, "expected '<scheme>://<address>'")

        scheme_str, address = target.split("://", 1)
        try:
            scheme = TargetScheme(scheme_str.lower())
        except ValueError:
            supported = [s.value for s in TargetScheme]
            raise ConfigurationError("target", target, f"unsupported scheme, expected one of {supported}")

        if scheme == TargetScheme.LOCAL:
            return cls(scheme=scheme, host=address or "cpu")

        host, sep, port_str = address.rpartition(":")
        if not sep or not host:
            raise ConfigurationError("target", target, "grpc targets need 'host:port'")
        try:
            port = int(port_str)
        except ValueError:
            raise ConfigurationError("target", target, f"port '{port_str}' is not an integer")
        if not 0 < port < 65536:
            raise ConfigurationError("target", target, f"port {port} out of range")

        return cls(scheme=scheme, host=host, port=port)

    @property
    def is_remote(self) -> bool:
        return self.scheme == TargetScheme.GRPC

    @property
    def address(self) -> str:
        """``host:port`` for remote targets, the device name for local ones."""
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.scheme.value}://{self.address}"


@dataclass
class ServerConfig:
    """Accelerator server process configuration."""
    command: List[str] = field(default_factory=lambda: [DEFAULT_SERVER_COMMAND])
    launch: bool = True
    env: Dict[str, str] = field(default_factory=dict)
    kill_timeout: float = 10.0

    def __post_init__(self):
        if isinstance(self.command, str):
            self.command = shlex.split(self.command)
        if self.launch and not self.command:
            raise ConfigurationError("server.command", self.command, "empty command with launch enabled")
        if self.kill_timeout <= 0:
            raise ConfigurationError("server.kill_timeout", self.kill_timeout, "must be positive")


@dataclass
class SessionConfig:
    """Session target and connection settings."""
    target: str = DEFAULT_TARGET
    connect_timeout: float = 30.0
    poll_interval: float = 0.25

    # Raise instead of falling back to the host CPU when XLA is missing
    require_accelerator: bool = False

    def __post_init__(self):
        # Validates the target eagerly
        Target.parse(self.target)
        if self.connect_timeout < 0:
            raise ConfigurationError("session.connect_timeout", self.connect_timeout, "must be >= 0")
        if self.poll_interval <= 0:
            raise ConfigurationError("session.poll_interval", self.poll_interval, "must be positive")

    @property
    def parsed_target(self) -> Target:
        return Target.parse(self.target)


@dataclass
class CompilerConfig:
    """Executable compilation settings."""
    use_cache: bool = True
    cache_size: int = 64

    def __post_init__(self):
        if self.cache_size < 1:
            raise ConfigurationError("compiler.cache_size", self.cache_size, "must be >= 1")


@dataclass
class HarnessConfig:
    """
    Top-level harness configuration.

    Example:
        config = HarnessConfig.from_environment()
        with accelerator_session(config) as session:
            ...
    """
    server: ServerConfig = field(default_factory=ServerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    compiler: CompilerConfig = field(default_factory=CompilerConfig)

    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def should_launch_server(self) -> bool:
        """A server is only spawned for remote targets with launching enabled."""
        return self.server.launch and self.session.parsed_target.is_remote

    @classmethod
    def for_local(cls, device: str = "cpu") -> "HarnessConfig":
        """Host-only configuration: no server process, in-process device."""
        return cls(
            server=ServerConfig(launch=False),
            session=SessionConfig(target=f"local://{device}", connect_timeout=0.0),
        )

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "HarnessConfig":
        """
        Build a configuration from environment variables.

        ``COLAB_TPU_ADDR`` points at an already running TPU host, so no local
        server is launched for it. ``TPU_HARNESS_TARGET`` and
        ``TPU_HARNESS_SERVER`` override the defaults explicitly;
        ``TPU_HARNESS_JSON_LOGS=1`` switches to JSON log lines.
        """
        environ = os.environ if environ is None else environ

        server = ServerConfig()
        session = SessionConfig()

        if ENV_COLAB_TPU_ADDR in environ:
            session = SessionConfig(target=f"grpc://{environ[ENV_COLAB_TPU_ADDR]}")
            server = ServerConfig(launch=False)

        if ENV_TARGET in environ:
            session = SessionConfig(target=environ[ENV_TARGET])

        if ENV_SERVER in environ:
            server = ServerConfig(command=shlex.split(environ[ENV_SERVER]), launch=True)

        log_level = environ.get(ENV_LOG_LEVEL, "INFO").upper()
        json_logs = environ.get(ENV_JSON_LOGS, "").lower() in ("1", "true", "yes")
        return cls(server=server, session=session, log_level=log_level, json_logs=json_logs)

    @staticmethod
    def running_on_colab(environ: Optional[Mapping[str, str]] = None) -> bool:
        environ = os.environ if environ is None else environ
        return ENV_COLAB_GPU in environ or ENV_COLAB_TPU_ADDR in environ

    def to_dict(self) -> Dict[str, object]:
        return {
            "server": {
                "command": list(self.server.command),
                "launch": self.server.launch,
                "kill_timeout": self.server.kill_timeout,
            },
            "session": {
                "target": self.session.target,
                "connect_timeout": self.session.connect_timeout,
                "poll_interval": self.session.poll_interval,
                "require_accelerator": self.session.require_accelerator,
            },
            "compiler": {
                "use_cache": self.compiler.use_cache,
                "cache_size": self.compiler.cache_size,
            },
            "log_level": self.log_level,
            "json_logs": self.json_logs,
        }
