# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_config.py - Global constants and runtime tunables.

The wavelength grid is fixed at import time (``Final`` constants); every
other knob lives in a single ``UpliftSettings`` instance that can be
adjusted at runtime through ``configure()``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, fields, replace
from typing import Any, Final, Optional

__all__ = [
    "WAVELENGTH_MIN",
    "WAVELENGTH_MAX",
    "WAVELENGTH_SAMPLES",
    "WAVELENGTH_BASES",
    "HULL_EXTENT_FLOOR",
    "UpliftSettings",
    "get_settings",
    "configure",
    "reset_settings",
]

# ---------------------------------------------------------------------------
# Spectral grid
# ---------------------------------------------------------------------------
WAVELENGTH_MIN: Final[float] = 360.0
WAVELENGTH_MAX: Final[float] = 830.0
WAVELENGTH_SAMPLES: Final[int] = 64
WAVELENGTH_BASES: Final[int] = 12

# Sample clouds no wider than this in every channel never get a hull.
HULL_EXTENT_FLOOR: Final[float] = 1e-4


# ---------------------------------------------------------------------------
# Runtime tunables
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class UpliftSettings:
    """
    Tunable parameters of the uplifting pipeline.

    Attributes:
        boundary_samples: Number of color-solid samples forming the
            tesselation boundary.
        mismatch_samples_max: Fresh samples after which a metamer builder
            counts as converged.
        mismatch_samples_iter: Samples generated per builder step.
        hull_min_points: Minimum sample count before a hull is attempted.
        hull_min_extent: Minimum per-channel extent of the sample cloud;
            flatter clouds are treated as degenerate.
        position_tolerance: Vertex displacement below which a tesselation
            is patched in place rather than rebuilt.
        solver_max_iters: Iteration cap of the SLSQP solves.
        constraint_tol: Slack applied to fixed color constraints while
            sampling a mismatch volume.
        max_workers: Default worker count of a ``SolverContext``
            (``None`` lets the executor decide).
    """
    boundary_samples:      int = 64
    mismatch_samples_max:  int = 256
    mismatch_samples_iter: int = 16
    hull_min_points:       int = 4
    hull_min_extent:       float = 5e-4
    position_tolerance:    float = 1e-5
    solver_max_iters:      int = 256
    constraint_tol:        float = 1e-3
    max_workers:           Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("boundary_samples", "mismatch_samples_max",
                     "mismatch_samples_iter", "solver_max_iters"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.hull_min_points < 4:
            raise ValueError("hull_min_points must be at least 4 for a 3D hull")
        if self.hull_min_extent < HULL_EXTENT_FLOOR:
            raise ValueError(f"hull_min_extent must be at least {HULL_EXTENT_FLOOR}, "
                             f"got {self.hull_min_extent}")
        if self.position_tolerance < 0.0 or self.constraint_tol < 0.0:
            raise ValueError("Tolerances must be non-negative")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError("max_workers must be positive or None")


_SETTINGS: UpliftSettings = UpliftSettings()
_SETTINGS_LOCK = threading.Lock()


def get_settings() -> UpliftSettings:
    """Returns the active settings (immutable snapshot)."""
    return _SETTINGS


def configure(**kwargs: Any) -> UpliftSettings:
    """
    Replaces selected tunables and returns the new settings.

    Raises:
        ValueError: On unknown names or invalid values.
    """
    global _SETTINGS
    known = {f.name for f in fields(UpliftSettings)}
    unknown = set(kwargs) - known
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
    with _SETTINGS_LOCK:
        _SETTINGS = replace(_SETTINGS, **kwargs)
    return _SETTINGS


def reset_settings() -> UpliftSettings:
    """Restores the default tunables."""
    global _SETTINGS
    with _SETTINGS_LOCK:
        _SETTINGS = UpliftSettings()
    return _SETTINGS
