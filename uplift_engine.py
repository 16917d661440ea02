# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_engine.py - Engine facade tying scene, builders and queries.

Typical use::

    from logging_config import setup_logging
    from uplift_engine import UpliftEngine
    from uplift_uplifting import Uplifting, Vertex
    from uplift_constraints import DirectColorConstraint, LinearConstraint

    setup_logging()
    with UpliftEngine() as engine:
        u = engine.scene.add_uplifting(Uplifting())
        engine.scene.upliftings[u].verts.append(Vertex("red", DirectColorConstraint(
            colr_i=[0.4, 0.1, 0.1],
            cstr_j=[LinearConstraint(cmfs_j=0, illm_j=2, colr_j=[0.3, 0.1, 0.1])])))
        for _ in range(20):
            engine.update()
        spec = engine.query_spectrum(u, [0.2, 0.2, 0.2])

Each ``update()`` is one tick: every uplifting's builder advances by one
sampling batch per vertex and republishes its tesselation when needed,
after which the scene's mutation flags are cleared.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np

from uplift_context import SolverContext
from uplift_hull import ConvexHull
from uplift_scene import Scene
from uplift_tesselation import Tesselation, TesselationBuilder, pack_layouts

__all__ = ["UpliftEngine"]

logger = logging.getLogger("uplift.engine")


class UpliftEngine:
    """
    Owner of a scene, its tesselation builders and a worker pool.

    Args:
        scene: Scene to operate on; ``Scene.default()`` if omitted.
        context: Worker pool; a private one is created (and closed with the
            engine) if omitted.
        max_workers: Worker count of a privately created pool.
    """

    def __init__(self, scene: Optional[Scene] = None,
                 context: Optional[SolverContext] = None,
                 max_workers: Optional[int] = None) -> None:
        self.scene = scene if scene is not None else Scene.default()
        self._owns_context = context is None
        self.context = context if context is not None else SolverContext(max_workers)
        self.builders: List[TesselationBuilder] = []

    # -- lifecycle ---------------------------------------------------------
    def close(self) -> None:
        if self._owns_context:
            self.context.close()

    def __enter__(self) -> "UpliftEngine":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- ticking -----------------------------------------------------------
    def update(self) -> List[bool]:
        """
        Runs one tick over all upliftings.

        Returns:
            Per uplifting, whether its tesselation was rebuilt.
        """
        n = len(self.scene.upliftings)
        del self.builders[n:]
        while len(self.builders) < n:
            self.builders.append(TesselationBuilder(len(self.builders)))

        rebuilt = [b.update(self.scene, self.context) for b in self.builders]
        self.scene.end_update()
        if any(rebuilt):
            logger.debug("Rebuilt tesselations: %s",
                         [i for i, r in enumerate(rebuilt) if r])
        return rebuilt

    def is_converged(self) -> bool:
        """True once every active vertex builder has converged or has nothing to sample."""
        for tb in self.builders:
            uplifting = self.scene.upliftings[tb.uplifting_i]
            for vert, builder in zip(uplifting.verts, tb.builders):
                if vert.is_active and vert.has_mismatching(self.scene, uplifting) \
                        and not builder.is_converged():
                    return False
        return True

    # -- queries -----------------------------------------------------------
    def tesselation(self, uplifting_i: int) -> Tesselation:
        """Current snapshot; raises ``RuntimeError`` before the first update."""
        if uplifting_i >= len(self.builders) or self.builders[uplifting_i].tesselation is None:
            raise RuntimeError(f"Uplifting {uplifting_i} has not been updated yet")
        return self.builders[uplifting_i].tesselation

    def query_tetrahedron(self, uplifting_i: int, colr) -> Tuple[int, np.ndarray]:
        return self.tesselation(uplifting_i).query_tetrahedron(colr)

    def query_spectrum(self, uplifting_i: int, colr) -> np.ndarray:
        return self.tesselation(uplifting_i).query_spectrum(colr)

    def query_constraint(self, uplifting_i: int, vertex_i: int) -> np.ndarray:
        return self.tesselation(uplifting_i).query_constraint(vertex_i)

    def hull(self, uplifting_i: int, vertex_i: int) -> ConvexHull:
        """Mismatch volume hull of one vertex, for display only."""
        return self.builders[uplifting_i].builders[vertex_i].hull

    # -- packed buffers ----------------------------------------------------
    def pack_bary(self, uplifting_i: int) -> np.ndarray:
        return self.tesselation(uplifting_i).pack_bary()

    def pack_spectra(self, uplifting_i: int) -> np.ndarray:
        return self.tesselation(uplifting_i).pack_spectra()

    def pack_coeffs(self, uplifting_i: int) -> np.ndarray:
        return self.tesselation(uplifting_i).pack_coeffs()

    def pack_layouts(self) -> np.ndarray:
        return pack_layouts([self.tesselation(i) for i in range(len(self.builders))])
