from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv


# Calibration constants, tuned empirically on phone photos of printed documents.
TARGET_WIDTH = 800  # analysis width (px); sources are downsampled, never upscaled
NOISE_FLOOR = 15.0  # Laplacian magnitudes <= this are paper texture / sensor noise
MIN_EDGES = 100  # fewer gated edges than this: blank or hopelessly blurred frame
TOP_FRACTION = 0.2  # score = mean of the strongest 20% of edges
BLUR_THRESHOLD = 40  # score < threshold -> blurry
SENTINEL_SCORE = 999  # reported when the check itself could not run (fail-open)

_ENV_PREFIX = "LOGIAUDIT_"


@dataclass(frozen=True)
class GatekeeperConfig:
    target_width: int = TARGET_WIDTH
    noise_floor: float = NOISE_FLOOR
    min_edges: int = MIN_EDGES
    top_fraction: float = TOP_FRACTION
    threshold: int = BLUR_THRESHOLD

    def __post_init__(self) -> None:
        if self.target_width < 3:
            raise ValueError(f"target_width must be >= 3, got {self.target_width}")
        if self.noise_floor < 0:
            raise ValueError(f"noise_floor must be >= 0, got {self.noise_floor}")
        if self.min_edges < 1:
            raise ValueError(f"min_edges must be >= 1, got {self.min_edges}")
        if not 0.0 < self.top_fraction <= 1.0:
            raise ValueError(f"top_fraction must be in (0, 1], got {self.top_fraction}")
        if self.threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {self.threshold}")

    def replace(self, **overrides: Any) -> "GatekeeperConfig":
        """Copy with the given fields replaced; ``None`` values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes) if changes else self

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "GatekeeperConfig":
        """
        Build a config from LOGIAUDIT_* environment variables.
        A .env file at the project root (or `env_file`) is loaded first; real
        environment variables win over it.
        """
        if env_file is None:
            env_file = Path(__file__).resolve().parents[1] / ".env"
        load_dotenv(env_file, override=False)

        overrides: Dict[str, Any] = {}
        for field in dataclasses.fields(cls):
            key = _ENV_PREFIX + ("BLUR_THRESHOLD" if field.name == "threshold" else field.name.upper())
            raw = os.environ.get(key)
            if raw is None or raw.strip() == "":
                continue
            caster = float if field.type in ("float", float) else int
            try:
                overrides[field.name] = caster(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {key}: {raw!r}") from e
        return cls().replace(**overrides)
