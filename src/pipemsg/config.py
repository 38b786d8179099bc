"""
Endpoint configuration for pipe clients and servers.

A PipeEndpointConfig is fixed for the lifetime of the client or server it is
given to. Role-specific defaults mirror the two sides of a pipe: a client
reads (inbound) and waits up to two minutes for a server, a server writes
(outbound) and waits up to an hour for a client.
"""

import os
import tempfile
from dataclasses import dataclass, field, replace
from enum import Enum, Flag, auto
from typing import Any, Dict, Optional

MAX_PAYLOAD_SIZE = 0xFFFFFFFF

ENV_PREFIX = "PIPEMSG_"


class PipeDirection(Enum):
    """Direction of data flow seen from the local end."""

    IN = "in"
    OUT = "out"
    IN_OUT = "inout"

    @property
    def readable(self) -> bool:
        return self in (PipeDirection.IN, PipeDirection.IN_OUT)

    @property
    def writable(self) -> bool:
        return self in (PipeDirection.OUT, PipeDirection.IN_OUT)


class PipeOptions(Flag):
    """Transport hints carried alongside the endpoint."""

    NONE = 0
    WRITE_THROUGH = auto()
    ASYNCHRONOUS = auto()


class TransmissionMode(Enum):
    """Message boundary mode of the transport.

    Only BYTE is accepted; frame boundaries are always produced by the frame
    codec on top of a plain byte stream.
    """

    BYTE = "byte"
    MESSAGE = "message"


class Role(Enum):
    """Which side of the pipe an endpoint configuration belongs to."""

    CLIENT = "client"
    SERVER = "server"


_ROLE_DEFAULTS: Dict[Role, Dict[str, Any]] = {
    Role.CLIENT: {"direction": PipeDirection.IN, "timeout": 120.0},
    Role.SERVER: {"direction": PipeDirection.OUT, "timeout": 3600.0},
}


@dataclass(frozen=True)
class PipeEndpointConfig:
    """Immutable settings for one pipe endpoint."""

    name: str
    direction: PipeDirection = PipeDirection.IN
    timeout: float = 120.0
    in_buffer_size: int = 512
    out_buffer_size: int = 512
    max_instances: int = 10
    options: PipeOptions = PipeOptions.WRITE_THROUGH
    transmission_mode: TransmissionMode = TransmissionMode.BYTE
    send_timeout: float = 5.0
    send_poll_interval: float = 0.1
    connect_poll_interval: float = 0.05
    max_message_size: int = MAX_PAYLOAD_SIZE
    directory: Optional[str] = field(default=None)

    def __post_init__(self):
        """Validate the configuration."""
        if not self.name or not self.name.strip():
            raise ValueError("Endpoint name must not be empty")
        if self.transmission_mode is not TransmissionMode.BYTE:
            raise ValueError(
                "Only byte transmission mode is supported; "
                "message boundaries come from the frame codec"
            )
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.send_timeout <= 0:
            raise ValueError(f"send_timeout must be positive, got {self.send_timeout}")
        if self.send_poll_interval <= 0 or self.connect_poll_interval <= 0:
            raise ValueError("Poll intervals must be positive")
        if self.in_buffer_size <= 0 or self.out_buffer_size <= 0:
            raise ValueError("Buffer sizes must be positive")
        if self.max_instances < 1:
            raise ValueError(f"max_instances must be at least 1, got {self.max_instances}")
        if not 0 <= self.max_message_size <= MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"max_message_size must be between 0 and {MAX_PAYLOAD_SIZE}"
            )

    @classmethod
    def for_role(cls, role: Role, name: str, **overrides) -> "PipeEndpointConfig":
        """Build a configuration with the defaults of the given role."""
        settings = dict(_ROLE_DEFAULTS[role])
        settings.update(overrides)
        return cls(name=name, **settings)

    @classmethod
    def for_client(cls, name: str, **overrides) -> "PipeEndpointConfig":
        return cls.for_role(Role.CLIENT, name, **overrides)

    @classmethod
    def for_server(cls, name: str, **overrides) -> "PipeEndpointConfig":
        return cls.for_role(Role.SERVER, name, **overrides)

    @classmethod
    def from_env(
        cls, name: str, role: Role = Role.CLIENT, **overrides
    ) -> "PipeEndpointConfig":
        """
        Build a configuration from role defaults overlaid with environment values.

        Recognised variables: PIPEMSG_TIMEOUT, PIPEMSG_SEND_TIMEOUT,
        PIPEMSG_PIPE_DIR and PIPEMSG_MAX_INSTANCES. Explicit overrides win
        over the environment.
        """
        settings: Dict[str, Any] = {}

        if timeout := os.getenv(f"{ENV_PREFIX}TIMEOUT"):
            settings["timeout"] = float(timeout)
        if send_timeout := os.getenv(f"{ENV_PREFIX}SEND_TIMEOUT"):
            settings["send_timeout"] = float(send_timeout)
        if directory := os.getenv(f"{ENV_PREFIX}PIPE_DIR"):
            settings["directory"] = directory
        if max_instances := os.getenv(f"{ENV_PREFIX}MAX_INSTANCES"):
            settings["max_instances"] = int(max_instances)

        settings.update(overrides)
        return cls.for_role(role, name, **settings)

    def with_changes(self, **changes) -> "PipeEndpointConfig":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def endpoint_path(self) -> str:
        """
        Filesystem path of the endpoint socket.

        Absolute names are used as-is; anything else lives in the configured
        directory (the system temp directory by default).
        """
        if os.path.isabs(self.name):
            return self.name
        directory = self.directory or tempfile.gettempdir()
        return os.path.join(directory, f"pipemsg.{self.name}.sock")
