"""Graph configuration: device, optimization flags and tuning options."""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .errors import ConfigurationError


class DeviceType(Enum):
    """Device classes a graph can be bound to."""
    CPU = "cpu"
    GPU = "gpu"


@dataclass(frozen=True)
class DeviceId:
    """Device a graph executes on."""
    no: int = 0
    type: DeviceType = DeviceType.CPU


@dataclass
class Backend:
    """Backend settings the operators consult while building nodes."""
    device: DeviceId
    clip: float = 0.0  # 0 disables clipping

    def get_clip(self) -> float:
        return self.clip

    def set_clip(self, clip: float):
        if clip < 0:
            raise ConfigurationError(f"clip value must be >= 0, got {clip}")
        self.clip = float(clip)


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class GraphConfig:
    """Global settings for one graph."""
    device: DeviceType = DeviceType.CPU
    device_no: int = 0
    optimize: bool = False  # route dot/affine through the int16 path on CPU
    clip: float = 0.0
    autotune: bool = True  # time int16 against BLAS affine per shape bucket
    tuner_rounds: int = 1  # timings collected per candidate before deciding
    deduplicate: bool = True  # reuse structurally identical nodes

    def __post_init__(self):
        if isinstance(self.device, str):
            try:
                self.device = DeviceType(self.device.lower())
            except ValueError:
                raise ConfigurationError(f"unknown device type {self.device!r}") from None
        if self.clip < 0:
            raise ConfigurationError(f"clip value must be >= 0, got {self.clip}")
        if self.tuner_rounds < 1:
            raise ConfigurationError(f"tuner_rounds must be >= 1, got {self.tuner_rounds}")

    @property
    def device_id(self) -> DeviceId:
        return DeviceId(no=self.device_no, type=self.device)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "GraphConfig":
        """
        Build a config from TUNEGRAPH_* environment variables.

        Recognized variables: TUNEGRAPH_DEVICE, TUNEGRAPH_OPTIMIZE,
        TUNEGRAPH_CLIP, TUNEGRAPH_AUTOTUNE, TUNEGRAPH_TUNER_ROUNDS.
        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        values = {}
        if 'TUNEGRAPH_DEVICE' in env:
            values['device'] = env['TUNEGRAPH_DEVICE']
        if 'TUNEGRAPH_OPTIMIZE' in env:
            values['optimize'] = _env_flag(env['TUNEGRAPH_OPTIMIZE'])
        if 'TUNEGRAPH_AUTOTUNE' in env:
            values['autotune'] = _env_flag(env['TUNEGRAPH_AUTOTUNE'])
        try:
            if 'TUNEGRAPH_CLIP' in env:
                values['clip'] = float(env['TUNEGRAPH_CLIP'])
            if 'TUNEGRAPH_TUNER_ROUNDS' in env:
                values['tuner_rounds'] = int(env['TUNEGRAPH_TUNER_ROUNDS'])
        except ValueError as e:
            raise ConfigurationError(f"invalid TUNEGRAPH_* value: {e}") from e
        values.update(overrides)
        return cls(**values)
