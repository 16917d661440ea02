# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_uplifting.py - Upliftings and their constraint vertices.

An ``Uplifting`` maps colors of its primary color system (observer,
illuminant) to reflectances in its basis. The mapping is pinned down by
vertices, each carrying one constraint. A vertex can be realized as a
single metamer (``realize``) or, when its constraint leaves freedom under a
secondary color system, as samples on the boundary of its mismatch volume
(``realize_mismatch``).

All per-variant behavior dispatches with ``isinstance`` on the constraint
types of ``uplift_constraints``; unknown types raise ``TypeError``.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from uplift_config import WAVELENGTH_SAMPLES
from uplift_constraints import (
    Constraint, DirectColorConstraint, DirectSurfaceConstraint,
    IndirectSurfaceConstraint, MeasurementConstraint, SurfaceInfo,
)
from uplift_solver import (
    MismatchSample, solve_color_solid, solve_mismatch_solid, solve_spectrum,
    solve_spectrum_from_measurement,
)
from uplift_spectra import Color

__all__ = ["Vertex", "Uplifting"]

logger = logging.getLogger("uplift.uplifting")

_DIRECT_TYPES = (DirectColorConstraint, DirectSurfaceConstraint)
_COLOR_TYPES = (DirectColorConstraint, DirectSurfaceConstraint, IndirectSurfaceConstraint)


def _zero_sample(n_bases: int) -> MismatchSample:
    return MismatchSample(np.zeros(3), np.zeros(WAVELENGTH_SAMPLES), np.zeros(n_bases))


def _check_type(constraint: object) -> None:
    if not isinstance(constraint, (MeasurementConstraint,) + _COLOR_TYPES):
        raise TypeError(f"Unsupported constraint type: {type(constraint).__name__}")


def _has_duplicates(items: List[tuple]) -> bool:
    return len(set(items)) != len(items)


@dataclass
class Vertex:
    """Named constraint of an uplifting."""
    name:       str
    constraint: Constraint
    is_active:  bool = True

    def __post_init__(self) -> None:
        _check_type(self.constraint)

    # -- positions -----------------------------------------------------------
    def is_position_shifting(self) -> bool:
        """
        True if the vertex color follows the realized spectrum rather than
        the stored base color.
        """
        if isinstance(self.constraint, _COLOR_TYPES):
            return self.constraint.is_base_active
        return True

    def get_vertex_position(self) -> Color:
        """Stored base color; zero for measurements."""
        if isinstance(self.constraint, _COLOR_TYPES):
            return self.constraint.colr_i
        return np.zeros(3)

    def get_mismatch_position(self) -> Color:
        """Target color of the free variable (last active secondary constraint)."""
        cstr = self.constraint
        if isinstance(cstr, _COLOR_TYPES):
            active = [c for c in cstr.cstr_j if c.is_active]
            if active:
                return active[-1].colr_j
        return np.zeros(3)

    def set_mismatch_position(self, colr: Color) -> None:
        """
        Moves the free variable's target color, the last active secondary
        constraint. No-op without one.
        """
        cstr = self.constraint
        if not isinstance(cstr, _COLOR_TYPES):
            return
        active = [j for j, c in enumerate(cstr.cstr_j) if c.is_active]
        if not active:
            return
        j = active[-1]
        moved = dataclasses.replace(cstr.cstr_j[j], colr_j=colr)
        self.constraint = dataclasses.replace(
            cstr, cstr_j=cstr.cstr_j[:j] + (moved,) + cstr.cstr_j[j + 1:])

    def set_surface(self, surface: SurfaceInfo) -> None:
        """Attaches a picked surface; its diffuse color becomes the base color."""
        cstr = self.constraint
        if not isinstance(cstr, (DirectSurfaceConstraint, IndirectSurfaceConstraint)):
            raise TypeError(f"{type(cstr).__name__} has no surface")
        self.constraint = dataclasses.replace(cstr, surface=surface, colr_i=surface.diffuse)

    # -- realization -------------------------------------------------------
    def _linear_pairs(self, scene, uplifting: "Uplifting") -> list:
        cstr = self.constraint
        pairs = [(scene.csys(uplifting), cstr.colr_i)]
        if isinstance(cstr, _DIRECT_TYPES):
            pairs += [(scene.csys_of(c.cmfs_j, c.illm_j), c.colr_j)
                      for c in cstr.cstr_j if c.is_active]
        return pairs

    def realize(self, scene, uplifting: "Uplifting") -> MismatchSample:
        """
        One metamer satisfying the vertex constraint.

        Returns an all-zero sample for inactive vertices and for surface
        constraints on a black surface.
        """
        basis = scene.get_basis(uplifting.basis_i)
        if not self.is_active:
            return _zero_sample(basis.n_bases)

        cstr = self.constraint
        if isinstance(cstr, MeasurementConstraint):
            spec, coef = solve_spectrum_from_measurement(cstr.measure, basis)
        elif isinstance(cstr, DirectColorConstraint):
            spec, coef = solve_spectrum(self._linear_pairs(scene, uplifting), basis)
        elif isinstance(cstr, (DirectSurfaceConstraint, IndirectSurfaceConstraint)):
            if not np.any(cstr.colr_i):
                return _zero_sample(basis.n_bases)
            spec, coef = solve_spectrum(self._linear_pairs(scene, uplifting), basis)
        else:
            raise TypeError(f"Unsupported constraint type: {type(cstr).__name__}")

        colr = scene.csys(uplifting)(spec) if self.is_position_shifting() \
            else np.array(self.get_vertex_position())
        return MismatchSample(colr, spec, coef)

    def has_mismatching(self, scene, uplifting: "Uplifting") -> bool:
        """
        True if the constraint leaves a mismatch volume to explore.

        Direct constraints need at least two distinct active color systems
        (the uplifting's own included); interreflection constraints need a
        non-empty power series on their free variable.
        """
        cstr = self.constraint
        if isinstance(cstr, MeasurementConstraint):
            return False
        if isinstance(cstr, _DIRECT_TYPES):
            systems = [(c.cmfs_j, c.illm_j) for c in cstr.cstr_j if c.is_active]
            systems.append((uplifting.observer_i, uplifting.illuminant_i))
            return len(systems) > 1 and not _has_duplicates(systems)
        if isinstance(cstr, IndirectSurfaceConstraint):
            active = [c for c in cstr.cstr_j if c.is_active]
            if not active:
                return False
            keys = [(c.cmfs_j, tuple(np.asarray(p).tobytes() for p in c.powr_j)) for c in active]
            return not _has_duplicates(keys) and len(active[-1].powr_j) > 0
        raise TypeError(f"Unsupported constraint type: {type(cstr).__name__}")

    def realize_mismatch(self, scene, uplifting: "Uplifting", seed: int, n_samples: int,
                         context=None) -> List[MismatchSample]:
        """
        Boundary samples of the vertex's mismatch volume, reported in the
        color system of the free variable. Empty if there is no volume.
        """
        if not self.is_active or not self.has_mismatching(scene, uplifting):
            return []

        cstr = self.constraint
        basis = scene.get_basis(uplifting.basis_i)
        base = (scene.csys(uplifting), cstr.colr_i)

        if isinstance(cstr, _DIRECT_TYPES):
            active = [c for c in cstr.cstr_j if c.is_active]
            objectives = [scene.csys_of(c.cmfs_j, c.illm_j) for c in active]
            fixed = [(scene.csys_of(c.cmfs_j, c.illm_j), c.colr_j) for c in active[:-1]]
            if cstr.is_base_active:
                objectives.insert(0, base[0])
                fixed.insert(0, base)
        elif isinstance(cstr, IndirectSurfaceConstraint):
            active = [c for c in cstr.cstr_j if c.is_active]
            objectives = [scene.indirect_csys(active[-1].cmfs_j, active[-1].powr_j)]
            fixed = [(scene.indirect_csys(c.cmfs_j, c.powr_j), c.colr_j) for c in active[:-1]]
            if cstr.is_base_active:
                fixed.insert(0, base)
        else:
            raise TypeError(f"Unsupported constraint type: {type(cstr).__name__}")

        return solve_mismatch_solid(objectives, fixed, basis, seed, n_samples, context)


@dataclass
class Uplifting:
    """
    Color-to-spectrum mapping defined by a primary color system, a basis
    and a list of constraint vertices.
    """
    observer_i:   int = 0
    illuminant_i: int = 0
    basis_i:      int = 0
    verts:        List[Vertex] = field(default_factory=list)

    @property
    def resource_key(self) -> Tuple[int, int, int]:
        return self.basis_i, self.observer_i, self.illuminant_i

    def sample_color_solid(self, scene, seed: int, n_samples: int,
                           context=None) -> List[MismatchSample]:
        """Boundary of the primary color system's object color solid."""
        return solve_color_solid(scene.csys(self), scene.get_basis(self.basis_i),
                                 seed, n_samples, context)

    def find_vertex(self, name: str) -> Optional[int]:
        for i, v in enumerate(self.verts):
            if v.name == name:
                return i
        return None
