"""Preconfigured chaos controllers.

Presets are written in the same camelCase shape as chaos configuration
files; knobs a preset leaves out take the plugin defaults.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from mcpcheck.chaos import ChaosController
from mcpcheck.config import ChaosConfig
from mcpcheck.network_chaos import NetworkChaosPlugin
from mcpcheck.protocol_chaos import ProtocolChaosPlugin
from mcpcheck.stream_chaos import StreamChaosPlugin
from mcpcheck.timing_chaos import TimingChaosPlugin

Intensity = Literal["low", "medium", "high", "extreme"]

LIGHTWEIGHT: dict[str, Any] = {
    "intensity": 0.05,
    "network": {"delayMs": [0, 10], "dropProbability": 0.001},
    "protocol": {"injectAbortProbability": 0.001, "malformedJsonProbability": 0.0005},
}

MEDIUM: dict[str, Any] = {
    "intensity": 0.1,
    "network": {"delayMs": [0, 50], "dropProbability": 0.01},
    "protocol": {"malformedJsonProbability": 0.005},
}

AGGRESSIVE: dict[str, Any] = {
    "intensity": 0.3,
    "network": {
        "delayMs": [0, 200],
        "dropProbability": 0.05,
        "duplicateProbability": 0.02,
        "reorderProbability": 0.02,
        "corruptProbability": 0.01,
    },
    "protocol": {
        "injectAbortProbability": 0.02,
        "malformedJsonProbability": 0.01,
        "unexpectedMessageProbability": 0.03,
        "invalidSchemaProbability": 0.02,
    },
    "stream": {
        "chunkJitterMs": [0, 100],
        "reorderProbability": 0.03,
        "duplicateChunkProbability": 0.02,
        "splitChunkProbability": 0.03,
    },
    "timing": {
        "clockSkewMs": [-5000, 5000],
        "processingDelayMs": [0, 200],
        "timeoutReductionFactor": 0.5,
    },
}

EXTREME: dict[str, Any] = {
    "intensity": 0.5,
    "network": {
        "delayMs": [0, 1000],
        "dropProbability": 0.15,
        "duplicateProbability": 0.1,
        "reorderProbability": 0.1,
        "corruptProbability": 0.05,
    },
    "protocol": {
        "injectAbortProbability": 0.1,
        "malformedJsonProbability": 0.05,
        "unexpectedMessageProbability": 0.15,
        "invalidSchemaProbability": 0.1,
    },
    "stream": {
        "chunkJitterMs": [0, 500],
        "reorderProbability": 0.2,
        "duplicateChunkProbability": 0.1,
        "splitChunkProbability": 0.15,
    },
    "timing": {
        "clockSkewMs": [-30000, 30000],
        "processingDelayMs": [0, 500],
        "timeoutReductionFactor": 0.2,
    },
}

NETWORK_FOCUSED: dict[str, Any] = {
    "intensity": 0.2,
    "network": {
        "delayMs": [10, 500],
        "dropProbability": 0.1,
        "duplicateProbability": 0.05,
        "reorderProbability": 0.05,
        "corruptProbability": 0.02,
    },
}

PROTOCOL_FOCUSED: dict[str, Any] = {
    "intensity": 0.15,
    "protocol": {
        "injectAbortProbability": 0.05,
        "malformedJsonProbability": 0.03,
        "unexpectedMessageProbability": 0.08,
        "invalidSchemaProbability": 0.05,
    },
}

TIMING_FOCUSED: dict[str, Any] = {
    "intensity": 0.25,
    "timing": {
        "clockSkewMs": [-10000, 10000],
        "processingDelayMs": [50, 300],
        "timeoutReductionFactor": 0.3,
    },
    "stream": {"chunkJitterMs": [0, 200], "reorderProbability": 0.1},
}


def create_default(config: ChaosConfig) -> ChaosController:
    """Controller with one plugin per configured family.

    Plugins are registered network, protocol, stream, timing.
    """
    controller = ChaosController(config)
    if config.network is not None:
        controller.register(NetworkChaosPlugin(config.network))
    if config.protocol is not None:
        controller.register(ProtocolChaosPlugin(config.protocol))
    if config.stream is not None:
        controller.register(StreamChaosPlugin(config.stream))
    if config.timing is not None:
        controller.register(TimingChaosPlugin(config.timing))
    return controller


def _from_preset(preset: dict[str, Any], seed: int | None) -> ChaosController:
    config = ChaosConfig.model_validate(
        {**preset, "enable": True, "seed": seed if seed is not None else int(time.time() * 1000)}
    )
    return create_default(config)


def create_lightweight(seed: int | None = None) -> ChaosController:
    return _from_preset(LIGHTWEIGHT, seed)


def create_aggressive(seed: int | None = None) -> ChaosController:
    return _from_preset(AGGRESSIVE, seed)


def create_network_focused(seed: int | None = None) -> ChaosController:
    return _from_preset(NETWORK_FOCUSED, seed)


def create_protocol_focused(seed: int | None = None) -> ChaosController:
    return _from_preset(PROTOCOL_FOCUSED, seed)


def create_timing_focused(seed: int | None = None) -> ChaosController:
    return _from_preset(TIMING_FOCUSED, seed)


def create_by_intensity(intensity: Intensity, seed: int | None = None) -> ChaosController:
    """Map a named intensity level to a preset.

    Raises:
        ValueError: If the level is unknown
    """
    match intensity:
        case "low":
            return create_lightweight(seed)
        case "medium":
            return _from_preset(MEDIUM, seed)
        case "high":
            return create_aggressive(seed)
        case "extreme":
            return _from_preset(EXTREME, seed)
        case _:
            raise ValueError(f"Unknown chaos intensity: {intensity}")
