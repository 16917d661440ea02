# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Tesselation Builder
===================
Per uplifting, the color space is tesselated into tetrahedra spanned by
the color-solid boundary and the vertex constraints. Each point carries a
spectrum and its basis coefficients, so the spectrum of any color inside
the solid is a barycentric blend of four known reflectances.

``TesselationBuilder.update`` runs once per tick and does as little as
possible:

1. Boundary: resampled only when the color system is stale (first update,
   the uplifting points at other resources, or a used resource was
   written).
2. Vertices: each vertex has a ``MetamerBuilder``; converged builders of
   untouched vertices are skipped. Vertex colors that moved mark the
   tesselation stale; otherwise only spectra are refreshed.
3. Delaunay tetrahedralization (scipy/Qhull) of boundary ∪ active vertices
   and per-element inverse edge matrices, plus a ``PointLocationBVH``.
4. A new immutable ``Tesselation`` snapshot is published. Readers holding
   the previous snapshot keep a consistent view.

Packed layouts
--------------
``pack_bary``   : per element 64 bytes, ``inv`` float32 (4, 3) row-major with
                  the last row zero, then ``sub`` float32 (4,) with the last
                  entry zero.
``pack_spectra``: float32 (n_elems, n_wavelengths, 4), the four element
                  vertices interleaved per wavelength, in element order.
``pack_coeffs`` : float32 (n_elems, n_bases, 4), same interleaving.
``pack_layouts``: records (elem_offs, elem_size) uint32, one per uplifting.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numba import njit, prange
from scipy.spatial import Delaunay, QhullError

from uplift_bvh import PointLocationBVH
from uplift_config import get_settings
from uplift_context import SolverContext
from uplift_hull import MetamerBuilder
from uplift_solver import MismatchSample

__all__ = [
    "BARY_DTYPE",
    "LAYOUT_DTYPE",
    "Tesselation",
    "TesselationBuilder",
    "pack_layouts",
]

logger = logging.getLogger("uplift.tesselation")

BOUNDARY_SEED: int = 4
_DET_EPS: float = 1e-12

BARY_DTYPE = np.dtype([("inv", "<f4", (4, 3)), ("sub", "<f4", (4,))])
LAYOUT_DTYPE = np.dtype([("elem_offs", "<u4"), ("elem_size", "<u4")])


# =============================================================================
# 1. KERNELS
# =============================================================================

@njit(cache=True, fastmath=True, parallel=True)
def _element_inverses(points, elems):
    """
    Inverse of M = [v0 - v3 | v1 - v3 | v2 - v3] per tetrahedron, by
    adjugate; degenerate elements get an all-zero inverse.
    """
    n = elems.shape[0]
    inv = np.zeros((n, 3, 3))
    sub = np.zeros((n, 3))
    for e in prange(n):
        v3 = points[elems[e, 3]]
        m = np.empty((3, 3))
        for c in range(3):
            for r in range(3):
                m[r, c] = points[elems[e, c], r] - v3[r]
        det = (m[0, 0] * (m[1, 1] * m[2, 2] - m[1, 2] * m[2, 1])
               - m[0, 1] * (m[1, 0] * m[2, 2] - m[1, 2] * m[2, 0])
               + m[0, 2] * (m[1, 0] * m[2, 1] - m[1, 1] * m[2, 0]))
        for r in range(3):
            sub[e, r] = v3[r]
        if abs(det) < _DET_EPS:
            continue
        k = 1.0 / det
        inv[e, 0, 0] = (m[1, 1] * m[2, 2] - m[1, 2] * m[2, 1]) * k
        inv[e, 0, 1] = (m[0, 2] * m[2, 1] - m[0, 1] * m[2, 2]) * k
        inv[e, 0, 2] = (m[0, 1] * m[1, 2] - m[0, 2] * m[1, 1]) * k
        inv[e, 1, 0] = (m[1, 2] * m[2, 0] - m[1, 0] * m[2, 2]) * k
        inv[e, 1, 1] = (m[0, 0] * m[2, 2] - m[0, 2] * m[2, 0]) * k
        inv[e, 1, 2] = (m[0, 2] * m[1, 0] - m[0, 0] * m[1, 2]) * k
        inv[e, 2, 0] = (m[1, 0] * m[2, 1] - m[1, 1] * m[2, 0]) * k
        inv[e, 2, 1] = (m[0, 1] * m[2, 0] - m[0, 0] * m[2, 1]) * k
        inv[e, 2, 2] = (m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]) * k
    return inv, sub


# =============================================================================
# 2. SNAPSHOT
# =============================================================================

@dataclass(slots=True, frozen=True, eq=False)
class Tesselation:
    """
    Immutable tesselation of one uplifting.

    Points are ordered boundary first, then active vertices.
    ``vertex_points[i]`` is the point index of uplifting vertex ``i``
    (-1 for inactive vertices); ``vertex_samples`` holds the latest
    realization of every vertex.
    """
    points:         np.ndarray
    spectra:        np.ndarray
    coeffs:         np.ndarray
    elems:          np.ndarray
    inv:            np.ndarray
    sub:            np.ndarray
    n_boundary:     int
    vertex_points:  np.ndarray
    vertex_samples: Tuple[MismatchSample, ...]
    bvh:            PointLocationBVH

    @classmethod
    def build(cls, points: np.ndarray, spectra: np.ndarray, coeffs: np.ndarray,
              n_boundary: int, vertex_points: np.ndarray,
              vertex_samples: Sequence[MismatchSample]) -> "Tesselation":
        points = np.ascontiguousarray(points, dtype=np.float64)
        elems = np.zeros((0, 4), dtype=np.int64)
        if points.shape[0] >= 4:
            try:
                elems = np.ascontiguousarray(Delaunay(points).simplices, dtype=np.int64)
            except (QhullError, ValueError) as exc:
                logger.warning("Delaunay tetrahedralization of %d points failed: %s",
                               points.shape[0], exc)
        inv, sub = _element_inverses(points, elems)
        return cls(points, np.asarray(spectra), np.asarray(coeffs), elems, inv, sub,
                   int(n_boundary), np.asarray(vertex_points, dtype=np.int64),
                   tuple(vertex_samples), PointLocationBVH(points, elems, inv, sub))

    @property
    def n_elems(self) -> int:
        return self.elems.shape[0]

    # -- queries ---------------------------------------------------------------
    def query_tetrahedron(self, colr: np.ndarray) -> Tuple[int, np.ndarray]:
        """(element, barycentric weights) containing ``colr``; (-1, zeros) outside."""
        return self.bvh.query(colr)

    def query_spectrum(self, colr: np.ndarray) -> np.ndarray:
        """
        Uplifted reflectance of ``colr``. Colors outside the tesselation take
        the spectrum of the nearest point.
        """
        elem, bary = self.query_tetrahedron(colr)
        if elem < 0:
            if self.points.shape[0] == 0:
                return np.zeros(self.spectra.shape[1] if self.spectra.ndim == 2 else 0)
            nearest = int(np.argmin(np.sum((self.points - np.asarray(colr)) ** 2, axis=1)))
            return self.spectra[nearest].copy()
        return bary @ self.spectra[self.elems[elem]]

    def query_constraint(self, vertex_i: int) -> np.ndarray:
        """Realized spectrum of uplifting vertex ``vertex_i``."""
        return self.vertex_samples[vertex_i].spec

    # -- packing ---------------------------------------------------------------
    def pack_bary(self) -> np.ndarray:
        out = np.zeros(self.n_elems, dtype=BARY_DTYPE)
        out["inv"][:, :3, :] = self.inv
        out["sub"][:, :3] = self.sub
        return out

    def pack_spectra(self) -> np.ndarray:
        return np.ascontiguousarray(
            self.spectra[self.elems].transpose(0, 2, 1), dtype=np.float32)

    def pack_coeffs(self) -> np.ndarray:
        return np.ascontiguousarray(
            self.coeffs[self.elems].transpose(0, 2, 1), dtype=np.float32)


def pack_layouts(tesselations: Sequence[Tesselation]) -> np.ndarray:
    """Offset/size records placing each tesselation's elements in one shared buffer."""
    out = np.zeros(len(tesselations), dtype=LAYOUT_DTYPE)
    offs = 0
    for i, tess in enumerate(tesselations):
        out[i] = (offs, tess.n_elems)
        offs += tess.n_elems
    return out


# =============================================================================
# 3. BUILDER
# =============================================================================

class TesselationBuilder:
    """
    Keeps the tesselation of ``scene.upliftings[uplifting_i]`` current.

    Owns one ``MetamerBuilder`` per vertex.
    """

    __slots__ = ("uplifting_i", "builders", "boundary", "tesselation",
                 "_first", "_resource_key", "_n_verts", "_seen")

    def __init__(self, uplifting_i: int) -> None:
        self.uplifting_i = uplifting_i
        self.builders: List[MetamerBuilder] = []
        self.boundary: List[MismatchSample] = []
        self.tesselation: Optional[Tesselation] = None
        self._first = True
        self._resource_key: Optional[Tuple[int, int, int]] = None
        self._n_verts = 0
        self._seen: List[Optional[tuple]] = []

    def is_color_system_stale(self, scene, uplifting) -> bool:
        return self._first \
            or uplifting.resource_key != self._resource_key \
            or scene.is_basis_mutated(uplifting.basis_i) \
            or scene.is_observer_mutated(uplifting.observer_i) \
            or scene.is_illuminant_mutated(uplifting.illuminant_i)

    def update(self, scene, context: Optional[SolverContext] = None) -> bool:
        """
        Advances vertex builders by one step and republishes the
        tesselation if anything changed.

        Returns:
            True if the tesselation was re-tetrahedralized.
        """
        settings = get_settings()
        uplifting = scene.upliftings[self.uplifting_i]
        verts = uplifting.verts

        csys_stale = self.is_color_system_stale(scene, uplifting)
        tess_stale = csys_stale or len(verts) != self._n_verts
        spec_stale = self._first

        # Step 1; color solid boundary
        if csys_stale:
            self.boundary = uplifting.sample_color_solid(
                scene, BOUNDARY_SEED, settings.boundary_samples, context)
            logger.info("Uplifting %d sampled %d color system boundary points",
                        self.uplifting_i, len(self.boundary))

        # Step 2; vertex constraints
        del self.builders[len(verts):]
        del self._seen[len(verts):]
        while len(self.builders) < len(verts):
            self.builders.append(MetamerBuilder())
            self._seen.append(None)

        old_samples = self.tesselation.vertex_samples if self.tesselation is not None else ()
        samples: List[MismatchSample] = []
        for i, vert in enumerate(verts):
            builder = self.builders[i]
            if csys_stale:
                builder.clear()
                builder.assign_vertex(vert)
            elif not builder.matches_vertex(vert):
                builder.assign_vertex(vert)

            toggled = self._seen[i] is not None and self._seen[i][0] != vert.is_active
            touched = toggled or self._seen[i] is None \
                or not (self._seen[i][1] == vert.constraint)
            if toggled:
                tess_stale = True
            old = old_samples[i] if i < len(old_samples) and not tess_stale else None
            if old is not None and builder.is_converged() and not touched:
                samples.append(old)
                continue

            new = builder.realize(vert, scene, uplifting, context)
            self._seen[i] = (vert.is_active, vert.constraint)
            spec_stale = True
            if old is None or not np.allclose(old.colr, new.colr,
                                              rtol=0.0, atol=settings.position_tolerance):
                tess_stale = True
            samples.append(new)

        self._first = False
        self._resource_key = uplifting.resource_key
        self._n_verts = len(verts)

        if not (tess_stale or spec_stale):
            return False

        # Step 3; merge boundary and active vertices
        vertex_points = np.full(len(verts), -1, dtype=np.int64)
        rows = list(self.boundary)
        for i, (vert, s) in enumerate(zip(verts, samples)):
            if vert.is_active:
                vertex_points[i] = len(rows)
                rows.append(s)
        n_bases = scene.get_basis(uplifting.basis_i).n_bases
        points = np.array([s.colr for s in rows]).reshape(-1, 3)
        spectra = np.array([s.spec for s in rows]).reshape(len(rows), -1)
        coeffs = np.array([s.coef for s in rows]).reshape(len(rows), n_bases)

        if tess_stale or self.tesselation is None:
            self.tesselation = Tesselation.build(
                points, spectra, coeffs, len(self.boundary), vertex_points, samples)
            logger.debug("Uplifting %d tesselated into %d elements",
                         self.uplifting_i, self.tesselation.n_elems)
            return True

        # Step 4; same geometry, refreshed spectra
        self.tesselation = dataclasses.replace(
            self.tesselation, spectra=spectra, coeffs=coeffs,
            vertex_samples=tuple(samples))
        return False
