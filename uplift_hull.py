# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Incremental Hull Cache
======================
``MetamerBuilder`` keeps a rolling window of mismatch-volume boundary
samples for one vertex and a convex hull over them. Every ``realize`` call
adds one small batch of samples until enough fresh samples are cached; a
metamer for the vertex's current free-variable color is then interpolated
from the hull's tetrahedra instead of running a constrained solve.

State machine::

    EMPTY --realize (volume exists)--> SAMPLING --fresh >= max--> CONVERGED
      ^                                   |                          |
      +------ clear / no volume ----------+--------------------------+
    assign_vertex: every cached sample becomes stale (SAMPLING)

Stale samples stay in the window and keep the hull usable while new
samples stream in; each inserted batch retires as many stale samples from
the front of the window as it adds at the back.

``ConvexHull`` wraps ``scipy.spatial`` (Qhull). Inputs that are too small or
too flat are rejected before reaching Qhull, and Qhull errors leave the hull
empty, so callers fall back to a direct solve.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from typing import Deque, Iterable, Optional, Sequence, Tuple

import numpy as np
from numba import njit
from scipy.spatial import ConvexHull as QhullHull
from scipy.spatial import Delaunay, QhullError

from uplift_config import HULL_EXTENT_FLOOR, get_settings
from uplift_constraints import Constraint, has_equal_mismatching
from uplift_solver import MismatchSample

__all__ = ["ConvexHull", "BuilderState", "MetamerBuilder"]

logger = logging.getLogger("uplift.hull")


# =============================================================================
# 1. KERNELS
# =============================================================================

@njit(cache=True, fastmath=True)
def _closest_point_on_triangle(p, a, b, c):
    """Closest point to ``p`` on triangle abc (Ericson, Real-Time Collision Detection 5.1.5)."""
    ab = b - a
    ac = c - a
    ap = p - a
    d1 = ab @ ap
    d2 = ac @ ap
    if d1 <= 0.0 and d2 <= 0.0:
        return a
    bp = p - b
    d3 = ab @ bp
    d4 = ac @ bp
    if d3 >= 0.0 and d4 <= d3:
        return b
    vc = d1 * d4 - d3 * d2
    if vc <= 0.0 and d1 >= 0.0 and d3 <= 0.0:
        return a + ab * (d1 / (d1 - d3))
    cp = p - c
    d5 = ab @ cp
    d6 = ac @ cp
    if d6 >= 0.0 and d5 <= d6:
        return c
    vb = d5 * d2 - d1 * d6
    if vb <= 0.0 and d2 >= 0.0 and d6 <= 0.0:
        return a + ac * (d2 / (d2 - d6))
    va = d3 * d6 - d5 * d4
    if va <= 0.0 and (d4 - d3) >= 0.0 and (d5 - d6) >= 0.0:
        return b + (c - b) * ((d4 - d3) / ((d4 - d3) + (d5 - d6)))
    denom = 1.0 / (va + vb + vc)
    return a + ab * (vb * denom) + ac * (vc * denom)


@njit(cache=True, fastmath=True)
def _closest_point_on_facets(p, points, facets):
    best = points[facets[0, 0]].copy()
    best_d = np.inf
    for i in range(facets.shape[0]):
        q = _closest_point_on_triangle(
            p, points[facets[i, 0]], points[facets[i, 1]], points[facets[i, 2]])
        d = np.sum((q - p) ** 2)
        if d < best_d:
            best_d = d
            best = q
    return best


# =============================================================================
# 2. CONVEX HULL
# =============================================================================

class ConvexHull:
    """
    Convex hull of a 3D point set with a Delaunay tetrahedralization of its
    vertices.

    Attributes:
        points: (N, 3) hull vertex positions.
        coeffs: (N, n_bases) basis coefficients per hull vertex (may be empty).
        spectra: (N, n_wavelengths) spectra per hull vertex (may be empty).
        facets: (F, 3) outward triangles, indices into ``points``.
        elems: (E, 4) tetrahedra, indices into ``points``.
    """

    __slots__ = ("points", "coeffs", "spectra", "facets", "elems", "_delaunay")

    def __init__(self) -> None:
        self.points = np.zeros((0, 3))
        self.coeffs = np.zeros((0, 0))
        self.spectra = np.zeros((0, 0))
        self.facets = np.zeros((0, 3), dtype=np.int64)
        self.elems = np.zeros((0, 4), dtype=np.int64)
        self._delaunay: Optional[Delaunay] = None

    @property
    def is_empty(self) -> bool:
        return self.points.shape[0] == 0

    @property
    def has_delaunay(self) -> bool:
        return self._delaunay is not None

    @staticmethod
    def is_buildable(points: np.ndarray, min_points: Optional[int] = None,
                     min_extent: Optional[float] = None) -> bool:
        """
        Size and flatness guard applied before calling Qhull. The extent
        threshold never drops below ``HULL_EXTENT_FLOOR``.
        """
        settings = get_settings()
        min_points = settings.hull_min_points if min_points is None else min_points
        min_extent = settings.hull_min_extent if min_extent is None else min_extent
        min_extent = max(min_extent, HULL_EXTENT_FLOOR)
        if points.ndim != 2 or points.shape[0] < max(min_points, 4) or points.shape[1] != 3:
            return False
        if not np.all(np.isfinite(points)):
            return False
        extent = points.max(axis=0) - points.min(axis=0)
        return bool(extent.min() > min_extent)

    @classmethod
    def build(
        cls,
        points: np.ndarray,
        coeffs: Optional[np.ndarray] = None,
        spectra: Optional[np.ndarray] = None,
        min_points: Optional[int] = None,
        min_extent: Optional[float] = None,
    ) -> "ConvexHull":
        """
        Builds the hull of ``points``; per-point ``coeffs``/``spectra`` are
        carried along for the hull vertices. Returns an empty hull for
        degenerate input.
        """
        hull = cls()
        points = np.asarray(points, dtype=np.float64)
        if not cls.is_buildable(points, min_points, min_extent):
            return hull

        try:
            qh = QhullHull(points)
            verts = np.sort(qh.vertices)
            remap = np.full(points.shape[0], -1, dtype=np.int64)
            remap[verts] = np.arange(verts.shape[0])
            hull_points = points[verts]
            delaunay = Delaunay(hull_points)
        except (QhullError, ValueError) as exc:
            logger.debug("Hull construction failed for %d points: %s", points.shape[0], exc)
            return hull

        hull.points = hull_points
        hull.facets = remap[qh.simplices]
        hull.elems = np.asarray(delaunay.simplices, dtype=np.int64)
        hull._delaunay = delaunay
        if coeffs is not None:
            hull.coeffs = np.asarray(coeffs, dtype=np.float64)[verts]
        if spectra is not None:
            hull.spectra = np.asarray(spectra, dtype=np.float64)[verts]
        return hull

    def barycentric(self, p: np.ndarray, elem: int) -> np.ndarray:
        """Barycentric weights of ``p`` in tetrahedron ``elem``, in ``elems[elem]`` order."""
        T = self._delaunay.transform[elem]
        b = T[:3] @ (np.asarray(p, dtype=np.float64) - T[3])
        return np.append(b, 1.0 - b.sum())

    def find_enclosing_elem(self, p: np.ndarray) -> Tuple[np.ndarray, int]:
        """
        Tetrahedron containing ``p`` and its barycentric weights.

        For points outside the hull the tetrahedron with the smallest
        barycentric violation is returned; its weights still sum to one but
        some are negative. Without a tetrahedralization the element is -1
        and the weights are zero.
        """
        if self._delaunay is None:
            return np.zeros(4), -1
        p = np.asarray(p, dtype=np.float64)
        elem = int(self._delaunay.find_simplex(p))
        if elem >= 0:
            return self.barycentric(p, elem), elem

        T = self._delaunay.transform
        b = np.einsum("eij,ej->ei", T[:, :3], p - T[:, 3])
        bary = np.concatenate([b, 1.0 - b.sum(axis=1, keepdims=True)], axis=1)
        err = np.sum((bary - np.clip(bary, 0.0, 1.0)) ** 2, axis=1)
        err = np.where(np.isfinite(err), err, np.inf)
        elem = int(np.argmin(err))
        return bary[elem], elem

    def find_closest_interior(self, p: np.ndarray) -> np.ndarray:
        """``p`` itself if inside the hull, else its projection onto the hull surface."""
        p = np.asarray(p, dtype=np.float64)
        if self._delaunay is None:
            return p.copy()
        if self._delaunay.find_simplex(p) >= 0:
            return p.copy()
        return _closest_point_on_facets(p, self.points, self.facets)

    def interpolate_coeffs(self, p: np.ndarray) -> np.ndarray:
        """Barycentric blend of vertex coefficients at ``p``, clamped to [-1, 1]."""
        bary, elem = self.find_enclosing_elem(p)
        if elem < 0:
            return np.zeros(self.coeffs.shape[1])
        coef = bary @ self.coeffs[self.elems[elem]]
        return np.clip(coef, -1.0, 1.0)


# =============================================================================
# 3. METAMER BUILDER
# =============================================================================

class BuilderState(enum.Enum):
    EMPTY = "empty"
    SAMPLING = "sampling"
    CONVERGED = "converged"


class MetamerBuilder:
    """
    Rolling cache of mismatch samples for one vertex.

    Owned by a single ``TesselationBuilder``; not safe for concurrent use.
    """

    __slots__ = ("_samples", "_stale", "_count", "_constraint", "hull")

    def __init__(self) -> None:
        self._samples: Deque[MismatchSample] = deque()
        self._stale = 0
        self._count = 0
        self._constraint: Optional[Constraint] = None
        self.hull = ConvexHull()

    # -- inspection ----------------------------------------------------------
    @property
    def samples(self) -> Tuple[MismatchSample, ...]:
        return tuple(self._samples)

    @property
    def n_stale(self) -> int:
        return self._stale

    @property
    def n_fresh(self) -> int:
        return len(self._samples) - self._stale

    @property
    def constraint(self) -> Optional[Constraint]:
        return self._constraint

    @property
    def state(self) -> BuilderState:
        if not self._samples:
            return BuilderState.EMPTY
        if self.is_converged():
            return BuilderState.CONVERGED
        return BuilderState.SAMPLING

    def is_converged(self) -> bool:
        return self.n_fresh >= get_settings().mismatch_samples_max

    def matches_vertex(self, vertex) -> bool:
        """True if the cached constraint spans the same mismatch volume as ``vertex``'s."""
        if self._constraint is None:
            return False
        return has_equal_mismatching(self._constraint, vertex.constraint)

    # -- mutation ------------------------------------------------------------
    def assign_vertex(self, vertex) -> None:
        """Adopts ``vertex``'s constraint; every cached sample becomes stale."""
        self._constraint = vertex.constraint
        self._stale = len(self._samples)
        self._count = 0

    set_vertex = assign_vertex

    def clear(self) -> None:
        self._samples.clear()
        self._stale = 0
        self._count = 0
        self.hull = ConvexHull()

    def insert(self, samples: Sequence[MismatchSample]) -> None:
        """
        Appends fresh samples, retiring up to as many stale samples from the
        front, then rebuilds the hull over the whole window. Fresh samples
        always sit at the tail of ``samples``, newest last.
        """
        samples = list(samples)
        if self._stale > 0:
            n_drop = min(len(samples), len(self._samples), self._stale)
            for _ in range(n_drop):
                self._samples.popleft()
            self._stale -= n_drop
        self._samples.extend(samples)
        self._rebuild_hull()

    def _rebuild_hull(self) -> None:
        if not self._samples:
            self.hull = ConvexHull()
            return
        colrs = np.array([s.colr for s in self._samples])
        coeffs = np.array([s.coef for s in self._samples])
        spectra = np.array([s.spec for s in self._samples])
        self.hull = ConvexHull.build(colrs, coeffs, spectra)

    def realize(self, vertex, scene, uplifting, context=None) -> MismatchSample:
        """
        Metamer for ``vertex`` at its current free-variable color.

        Advances sampling by one batch while the volume exists and the
        window is not converged; interpolates from the hull when it has
        tetrahedra, otherwise solves directly.
        """
        if not vertex.is_active:
            return vertex.realize(scene, uplifting)

        settings = get_settings()
        if vertex.has_mismatching(scene, uplifting):
            if not self.is_converged():
                batch = settings.mismatch_samples_iter
                new = vertex.realize_mismatch(scene, uplifting, self._count, batch, context)
                self.insert(new)
                self._count += batch
        elif self._samples:
            self.clear()

        if not self.hull.has_delaunay:
            return vertex.realize(scene, uplifting)

        basis = scene.get_basis(uplifting.basis_i)
        coef = self.hull.interpolate_coeffs(vertex.get_mismatch_position())
        spec = np.clip(basis(coef), 0.0, 1.0)
        colr = scene.csys(uplifting)(spec) if vertex.is_position_shifting() \
            else np.array(vertex.get_vertex_position())
        return MismatchSample(colr, spec, coef)
