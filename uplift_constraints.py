# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_constraints.py - Vertex constraint data classes.

Every vertex of an uplifting carries exactly one constraint, one of:

* ``MeasurementConstraint``: a measured reflectance, fitted directly.
* ``DirectColorConstraint``: a base color under the uplifting's own color
  system plus secondary colors under other (observer, illuminant) pairs.
* ``DirectSurfaceConstraint``: as above, with the base color taken from a
  scene surface.
* ``IndirectSurfaceConstraint``: a surface color plus secondary colors of
  interreflected light (power series color systems).

Constraint objects are immutable; edits produce new objects through
``dataclasses.replace``. Equality (``==``) compares everything, colors up to
floating-point tolerance. ``is_similar`` and ``has_equal_mismatching``
compare structure only and ignore the free variable, which is what decides
whether a cached mismatch volume can be reused.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple, TypeAlias, Union

import numpy as np

from uplift_config import WAVELENGTH_SAMPLES
from uplift_spectra import Spectrum

__all__ = [
    "SurfaceInfo",
    "LinearConstraint",
    "NLinearConstraint",
    "MeasurementConstraint",
    "DirectColorConstraint",
    "DirectSurfaceConstraint",
    "IndirectSurfaceConstraint",
    "Constraint",
    "has_equal_mismatching",
]


def _as_color(value) -> np.ndarray:
    arr = np.array(value, dtype=np.float64).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"Expected a 3-component color, got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


def _colors_close(a: np.ndarray, b: np.ndarray) -> bool:
    return bool(np.allclose(a, b, rtol=1e-5, atol=1e-6))


def _zeros3() -> np.ndarray:
    return _as_color((0.0, 0.0, 0.0))


# ---------------------------------------------------------------------------
# Surface records
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True, eq=False)
class SurfaceInfo:
    """Scene surface point a constraint was picked from."""
    position: np.ndarray = field(default_factory=_zeros3)
    normal:   np.ndarray = field(default_factory=_zeros3)
    diffuse:  np.ndarray = field(default_factory=_zeros3)
    object_i: int = -1

    def __post_init__(self) -> None:
        for name in ("position", "normal", "diffuse"):
            object.__setattr__(self, name, _as_color(getattr(self, name)))

    @classmethod
    def invalid(cls) -> "SurfaceInfo":
        return cls()

    @property
    def is_valid(self) -> bool:
        return self.object_i >= 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SurfaceInfo):
            return NotImplemented
        return self.object_i == other.object_i \
            and _colors_close(self.position, other.position) \
            and _colors_close(self.normal, other.normal) \
            and _colors_close(self.diffuse, other.diffuse)

    __hash__ = None  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Secondary constraints
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True, eq=False)
class LinearConstraint:
    """Target color ``colr_j`` under observer ``cmfs_j`` and illuminant ``illm_j``."""
    cmfs_j:    int = 0
    illm_j:    int = 0
    colr_j:    np.ndarray = field(default_factory=_zeros3)
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "colr_j", _as_color(self.colr_j))

    @property
    def system_key(self) -> Tuple[int, int]:
        return self.cmfs_j, self.illm_j

    def is_similar(self, other: "LinearConstraint") -> bool:
        """Same color system and activity, target color ignored."""
        return isinstance(other, LinearConstraint) \
            and self.is_active == other.is_active \
            and self.cmfs_j == other.cmfs_j \
            and self.illm_j == other.illm_j

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LinearConstraint):
            return NotImplemented
        return self.is_similar(other) and _colors_close(self.colr_j, other.colr_j)

    __hash__ = None  # type: ignore[assignment]


@dataclass(slots=True, frozen=True, eq=False)
class NLinearConstraint:
    """
    Target color ``colr_j`` of interreflected light.

    ``powr_j[k]`` is the incident power on paths touching the constrained
    surface ``k`` times; an empty series means the path query found
    nothing and the constraint cannot be solved for.
    """
    cmfs_j:    int = 0
    powr_j:    Tuple[np.ndarray, ...] = ()
    colr_j:    np.ndarray = field(default_factory=_zeros3)
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "colr_j", _as_color(self.colr_j))
        powers = []
        for p in self.powr_j:
            p = np.array(p, dtype=np.float64)
            if p.shape != (WAVELENGTH_SAMPLES,):
                raise ValueError(f"Power spectra must have shape ({WAVELENGTH_SAMPLES},), got {p.shape}")
            p.setflags(write=False)
            powers.append(p)
        object.__setattr__(self, "powr_j", tuple(powers))

    def is_similar(self, other: "NLinearConstraint") -> bool:
        """Same observer, activity and power series, target color ignored."""
        return isinstance(other, NLinearConstraint) \
            and self.is_active == other.is_active \
            and self.cmfs_j == other.cmfs_j \
            and len(self.powr_j) == len(other.powr_j) \
            and all(np.allclose(a, b) for a, b in zip(self.powr_j, other.powr_j))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NLinearConstraint):
            return NotImplemented
        return self.is_similar(other) and _colors_close(self.colr_j, other.colr_j)

    __hash__ = None  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Vertex constraints
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True, eq=False)
class MeasurementConstraint:
    """A measured reflectance spectrum."""
    measure: Spectrum

    def __post_init__(self) -> None:
        m = np.array(self.measure, dtype=np.float64)
        if m.shape != (WAVELENGTH_SAMPLES,):
            raise ValueError(f"measure must have shape ({WAVELENGTH_SAMPLES},), got {m.shape}")
        m.setflags(write=False)
        object.__setattr__(self, "measure", m)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MeasurementConstraint):
            return NotImplemented
        return bool(np.allclose(self.measure, other.measure))

    __hash__ = None  # type: ignore[assignment]


def _freeze_secondary(cstr_j, kind) -> tuple:
    cstr_j = tuple(cstr_j)
    for c in cstr_j:
        if not isinstance(c, kind):
            raise TypeError(f"Expected {kind.__name__}, got {type(c).__name__}")
    return cstr_j


@dataclass(slots=True, frozen=True, eq=False)
class DirectColorConstraint:
    """
    Base color ``colr_i`` under the uplifting's color system, plus secondary
    linear constraints. The last active secondary constraint is the free
    variable spanning the mismatch volume.
    """
    colr_i:         np.ndarray = field(default_factory=_zeros3)
    is_base_active: bool = True
    cstr_j:         Tuple[LinearConstraint, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "colr_i", _as_color(self.colr_i))
        object.__setattr__(self, "cstr_j", _freeze_secondary(self.cstr_j, LinearConstraint))

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.is_base_active == other.is_base_active \
            and _colors_close(self.colr_i, other.colr_i) \
            and self.cstr_j == other.cstr_j

    __hash__ = None  # type: ignore[assignment]


@dataclass(slots=True, frozen=True, eq=False)
class DirectSurfaceConstraint:
    """Direct color constraint whose base color was picked from a surface."""
    surface:        SurfaceInfo = field(default_factory=SurfaceInfo.invalid)
    colr_i:         np.ndarray = field(default_factory=_zeros3)
    is_base_active: bool = True
    cstr_j:         Tuple[LinearConstraint, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "colr_i", _as_color(self.colr_i))
        object.__setattr__(self, "cstr_j", _freeze_secondary(self.cstr_j, LinearConstraint))

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.is_base_active == other.is_base_active \
            and self.surface == other.surface \
            and _colors_close(self.colr_i, other.colr_i) \
            and self.cstr_j == other.cstr_j

    __hash__ = None  # type: ignore[assignment]


@dataclass(slots=True, frozen=True, eq=False)
class IndirectSurfaceConstraint:
    """Surface color plus secondary constraints on interreflected light."""
    surface:        SurfaceInfo = field(default_factory=SurfaceInfo.invalid)
    colr_i:         np.ndarray = field(default_factory=_zeros3)
    is_base_active: bool = True
    cstr_j:         Tuple[NLinearConstraint, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "colr_i", _as_color(self.colr_i))
        object.__setattr__(self, "cstr_j", _freeze_secondary(self.cstr_j, NLinearConstraint))

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.is_base_active == other.is_base_active \
            and self.surface == other.surface \
            and _colors_close(self.colr_i, other.colr_i) \
            and self.cstr_j == other.cstr_j

    __hash__ = None  # type: ignore[assignment]


Constraint: TypeAlias = Union[
    MeasurementConstraint,
    DirectColorConstraint,
    DirectSurfaceConstraint,
    IndirectSurfaceConstraint,
]


def has_equal_mismatching(a: Constraint, b: Constraint) -> bool:
    """
    True if ``a`` and ``b`` define the same mismatch volume.

    Constraints of the same kind qualify when their base color and
    activity agree, all secondary constraints but the last are equal and
    the last ones are similar (same system, any target color). Measurement
    constraints never span a volume, so any two of them qualify.
    """
    if type(a) is not type(b):
        return False
    if isinstance(a, MeasurementConstraint):
        return True
    if not isinstance(a, (DirectColorConstraint, DirectSurfaceConstraint,
                          IndirectSurfaceConstraint)):
        raise TypeError(f"Unsupported constraint type: {type(a).__name__}")

    if a.is_base_active != b.is_base_active \
            or not _colors_close(a.colr_i, b.colr_i) \
            or len(a.cstr_j) != len(b.cstr_j):
        return False
    if not a.cstr_j:
        return True
    return all(x == y for x, y in zip(a.cstr_j[:-1], b.cstr_j[:-1])) \
        and a.cstr_j[-1].is_similar(b.cstr_j[-1])
