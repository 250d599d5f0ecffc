"""Pydantic configuration models for mcp-check.

These models describe what to connect to and how to misbehave while doing
so. They are validated once at construction time and are NOT used in hot
paths (framing, message dispatch) - those use plain dataclasses.

Chaos models accept both snake_case and the camelCase keys used by the
JSON configuration files (``delayMs``, ``dropProbability``, ...).
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)
from pydantic.alias_generators import to_camel

# Milliseconds window [min, max]; the upper bound is exclusive when sampled.
MsRange = tuple[int, int]

_CHAOS_MODEL_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    extra="forbid",
)


def _check_range(value: MsRange) -> MsRange:
    low, high = value
    if low > high:
        raise ValueError(f"Range minimum {low} is greater than maximum {high}")
    return value


class TargetKind(str, Enum):
    """The wire binding a target is reached through."""

    PROCESS = "stdio"
    STREAM = "tcp"
    MESSAGE = "websocket"


# =============================================================================
# Targets
# =============================================================================


class ProcessTarget(BaseModel):
    """A server started as a child process, spoken to over its pipes.

    Attributes:
        command: Executable to launch
        args: Command-line arguments
        env: Extra environment variables, merged over the current environment
        cwd: Working directory for the child
        shell: Run the command through the system shell
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["stdio"] = "stdio"
    command: str = Field(..., min_length=1, description="Executable to launch")
    args: tuple[str, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    shell: bool = False

    @property
    def kind(self) -> TargetKind:
        return TargetKind.PROCESS


class StreamTarget(BaseModel):
    """A server listening on a TCP socket, optionally behind TLS."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["tcp"] = "tcp"
    host: str = Field(..., min_length=1)
    port: int = Field(..., gt=0, le=65535)
    secure: bool = Field(default=False, validation_alias=AliasChoices("secure", "tls"))
    timeout_ms: int = Field(
        default=5000,
        gt=0,
        validation_alias=AliasChoices("timeout_ms", "timeoutMs", "timeout"),
        description="Connect timeout in milliseconds",
    )

    @property
    def kind(self) -> TargetKind:
        return TargetKind.STREAM


class MessageTarget(BaseModel):
    """A server reached over a WebSocket."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["websocket"] = "websocket"
    url: str = Field(..., description="WebSocket URL")
    headers: dict[str, str] = Field(default_factory=dict)
    subprotocols: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("subprotocols", "protocols"),
    )
    timeout_ms: int = Field(
        default=10000,
        gt=0,
        validation_alias=AliasChoices("timeout_ms", "timeoutMs", "timeout"),
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v:
            raise ValueError("URL cannot be empty")

        valid_schemes = ("ws://", "wss://")
        if not any(v.startswith(scheme) for scheme in valid_schemes):
            raise ValueError(
                f"URL must start with one of: {', '.join(valid_schemes)}"
            )
        return v

    @property
    def kind(self) -> TargetKind:
        return TargetKind.MESSAGE


Target = Annotated[
    Union[ProcessTarget, StreamTarget, MessageTarget],
    Field(discriminator="type"),
]

_target_adapter: TypeAdapter[Target] = TypeAdapter(Target)


def parse_target(data: dict[str, Any]) -> ProcessTarget | StreamTarget | MessageTarget:
    """Build a target descriptor from a plain mapping (e.g. loaded JSON)."""
    return _target_adapter.validate_python(data)


# =============================================================================
# Connection behaviour
# =============================================================================


class RetryConfig(BaseModel):
    """Exponential backoff for ``connect_with_retry``.

    With the defaults an always-failing target is attempted 4 times with
    1000/2000/4000 ms between attempts.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class ClientConfig(BaseModel):
    """Configuration for the correlation client.

    Attributes:
        timeout: Per-request timeout in seconds (must be positive)
        protocol_version: Protocol revision offered during initialize
        client_name: Name reported in clientInfo
        client_version: Version reported in clientInfo
    """

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(default=15.0, gt=0, description="Request timeout in seconds")
    protocol_version: str = "2024-11-05"
    client_name: str = "mcp-check"
    client_version: str = "0.1.0"


# =============================================================================
# Chaos
# =============================================================================


class NetworkChaosConfig(BaseModel):
    model_config = _CHAOS_MODEL_CONFIG

    delay_ms: MsRange = (0, 100)
    drop_probability: float = Field(default=0.01, ge=0, le=1)
    duplicate_probability: float = Field(default=0.005, ge=0, le=1)
    reorder_probability: float = Field(default=0.005, ge=0, le=1)
    corrupt_probability: float = Field(default=0.001, ge=0, le=1)

    @field_validator("delay_ms")
    @classmethod
    def validate_delay(cls, v: MsRange) -> MsRange:
        return _check_range(v)


class StreamChaosConfig(BaseModel):
    model_config = _CHAOS_MODEL_CONFIG

    chunk_jitter_ms: MsRange = (0, 50)
    reorder_probability: float = Field(default=0.01, ge=0, le=1)
    duplicate_chunk_probability: float = Field(default=0.005, ge=0, le=1)
    split_chunk_probability: float = Field(default=0.01, ge=0, le=1)

    @field_validator("chunk_jitter_ms")
    @classmethod
    def validate_jitter(cls, v: MsRange) -> MsRange:
        return _check_range(v)


class ProtocolChaosConfig(BaseModel):
    model_config = _CHAOS_MODEL_CONFIG

    inject_abort_probability: float = Field(default=0.005, ge=0, le=1)
    malformed_json_probability: float = Field(default=0.001, ge=0, le=1)
    unexpected_message_probability: float = Field(default=0.01, ge=0, le=1)
    invalid_schema_probability: float = Field(
        default=0.005,
        ge=0,
        le=1,
        # Older configuration files carry this key misspelled.
        validation_alias=AliasChoices(
            "invalid_schema_probability",
            "invalidSchemaProbability",
            "invalidSchemaoProbability",
        ),
    )


class TimingChaosConfig(BaseModel):
    model_config = _CHAOS_MODEL_CONFIG

    clock_skew_ms: MsRange = (-1000, 1000)
    processing_delay_ms: MsRange = (0, 100)
    timeout_reduction_factor: float = Field(default=0.8, gt=0, le=1)

    @field_validator("clock_skew_ms", "processing_delay_ms")
    @classmethod
    def validate_ranges(cls, v: MsRange) -> MsRange:
        return _check_range(v)


def _wall_clock_seed() -> int:
    return int(time.time() * 1000)


class ChaosConfig(BaseModel):
    """Immutable per-run chaos snapshot.

    A plugin family is active only when its sub-config is present. The seed
    is always materialised so a stored config reproduces the run exactly.
    """

    model_config = _CHAOS_MODEL_CONFIG

    enable: bool = False
    seed: int = Field(default_factory=_wall_clock_seed)
    intensity: float = Field(default=0.1, ge=0, le=1)
    network: NetworkChaosConfig | None = None
    stream: StreamChaosConfig | None = None
    protocol: ProtocolChaosConfig | None = None
    timing: TimingChaosConfig | None = None
