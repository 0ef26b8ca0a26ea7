from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from particle_sim2d.physics.bounding_box import BoundingBox

# Largest theta for which no node containing the querying point passes width / d < theta
SELF_SAFE_THETA = 1.0 / math.sqrt(2.0)


@dataclass(slots=True)
class Sim2DParams:
    gravity: float = 1.0
    softening: float = 0.01
    theta: float = 0.5  # Barnes-Hut opening threshold (0 = never approximate)
    time_step: float = 1.0
    batch_width: int = 256
    max_depth: int = 32
    softened_direction: bool = False  # normalize force direction by the softened distance

    world_left: float = 0.0
    world_top: float = 0.0
    world_width: float = 2000.0
    world_height: float = 2000.0

    workers: int = 1  # threads for the force traversal

    gradient_field: str = "velocity"  # velocity | force
    gradient_sample_interval: int = 1  # steps between gradient range samples
    sort_by_mass_on_start: bool = True

    log_level: str = "INFO"

    def clamp(self) -> "Sim2DParams":
        self.gravity = max(0.0, float(self.gravity))
        self.softening = max(0.0, float(self.softening))
        self.theta = min(2.0, max(0.0, float(self.theta)))
        self.time_step = max(1e-9, float(self.time_step))
        self.batch_width = max(1, min(65536, int(self.batch_width)))
        self.max_depth = max(1, min(64, int(self.max_depth)))
        self.softened_direction = bool(self.softened_direction)
        self.world_left = float(self.world_left)
        self.world_top = float(self.world_top)
        self.world_width = max(1e-6, float(self.world_width))
        self.world_height = max(1e-6, float(self.world_height))
        self.workers = max(1, min(64, int(self.workers)))
        self.gradient_field = str(self.gradient_field or "velocity").strip().lower()
        if self.gradient_field not in {"velocity", "force"}:
            self.gradient_field = "velocity"
        self.gradient_sample_interval = max(1, int(self.gradient_sample_interval))
        self.sort_by_mass_on_start = bool(self.sort_by_mass_on_start)
        self.log_level = str(self.log_level or "INFO").strip().upper()
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            self.log_level = "INFO"
        return self

    def validate(self) -> list[str]:
        warnings: list[str] = []

        if self.softening <= 0.0:
            warnings.append("softening=0: forces diverge for close pairs.")
        if self.theta == 0.0:
            warnings.append("theta=0: every node is opened, cost is O(N^2).")
        elif self.theta > 1.0:
            warnings.append("theta>1: coarse approximation, expect large force errors.")
        elif self.theta > SELF_SAFE_THETA:
            warnings.append(
                "theta>0.707: nodes holding the particle itself would pass the opening test "
                "and are always opened instead."
            )
        if self.time_step != 1.0:
            warnings.append("time_step differs from the unit step the integrator is tuned for.")
        if self.batch_width < 8:
            warnings.append("batch_width<8: integration time goes to per-batch overhead.")
        if abs(self.world_width - self.world_height) > 1e-9 * max(self.world_width, self.world_height):
            warnings.append("non-square world: theta uses node width only.")
        if not all(math.isfinite(v) for v in (self.world_left, self.world_top, self.world_width, self.world_height)):
            warnings.append("world rectangle is not finite.")

        return warnings

    def world_box(self) -> BoundingBox:
        return BoundingBox(self.world_left, self.world_top, self.world_width, self.world_height)

    @classmethod
    def load(cls, path: str | Path) -> "Sim2DParams":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("parameter file must contain a JSON object")
        known = {f.name for f in fields(cls)}
        filtered: dict[str, Any] = {k: v for k, v in data.items() if k in known}
        return cls(**filtered).clamp()

    def save(self, path: str | Path) -> None:
        data = asdict(self)
        Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
