# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Point-Location Structure
========================
Implicit 8-ary bounding volume hierarchy over the tetrahedra of a
tesselation, answering "which tetrahedron contains this color".

Build
-----
1. Tetrahedron centroids are normalized to the bounding box of all
   tesselation points, quantized to 10 bits per axis and interleaved into
   30-bit Morton codes; primitives are sorted by code.
2. Nodes are laid out level by level: level ``l`` starts at
   ``(8**l - 1) / 7`` and the children of node ``i`` are ``8·i + 1 ...
   8·i + 8``. The tree has ``1 + ceil(log2(n) / 3)`` levels.
3. Each inner node's primitive range is split three times in a row at the
   highest differing Morton bit (binary search), giving up to eight
   children. Ranges of equal codes are split at their midpoint.
4. A node is a leaf if it holds a single primitive or sits on the last
   level; boxes are pulled up from the leaves.

All kernels are Numba-compiled; a built hierarchy is read-only and can be
queried from any number of threads.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from numba import njit, prange

__all__ = [
    "expand_bits_10",
    "morton_code",
    "find_msb",
    "find_split",
    "PointLocationBVH",
]

BVH_DEGREE: int = 8
_CONTAINS_EPS: float = 1e-6


# =============================================================================
# 1. MORTON CODES
# =============================================================================

@njit(cache=True)
def expand_bits_10(i: int) -> int:
    """Spreads the low 10 bits of ``i`` so that two zero bits follow each."""
    i = (i * 0x00010001) & 0xFF0000FF
    i = (i * 0x00000101) & 0x0F00F00F
    i = (i * 0x00000011) & 0xC30C30C3
    i = (i * 0x00000005) & 0x49249249
    return i


@njit(cache=True)
def morton_code(x: float, y: float, z: float) -> int:
    """30-bit Morton code of a point in the unit cube (values outside are clamped)."""
    xi = int(min(max(x * 1024.0, 0.0), 1023.0))
    yi = int(min(max(y * 1024.0, 0.0), 1023.0))
    zi = int(min(max(z * 1024.0, 0.0), 1023.0))
    return expand_bits_10(xi) * 4 + expand_bits_10(yi) * 2 + expand_bits_10(zi)


@njit(cache=True)
def find_msb(x: int) -> int:
    """Index of the highest set bit, -1 for zero."""
    msb = -1
    while x > 0:
        x >>= 1
        msb += 1
    return msb


@njit(cache=True)
def find_split(codes: np.ndarray, first: int, last: int) -> int:
    """
    Last index of the left half when splitting the sorted range
    ``[first, last]`` at its highest differing bit.
    """
    code_first = codes[first]
    code_last = codes[last]
    if code_first == code_last:
        return (first + last) >> 1

    prefix = find_msb(code_first ^ code_last)
    split = first
    step = last - first
    while True:
        step = (step + 1) >> 1
        new_split = split + step
        if new_split < last:
            if find_msb(code_first ^ codes[new_split]) < prefix:
                split = new_split
        if step <= 1:
            break
    return split


@njit(cache=True, parallel=True)
def _centroid_codes(points, elems, lo, scale):
    n = elems.shape[0]
    codes = np.empty(n, dtype=np.int64)
    for e in prange(n):
        c = np.zeros(3)
        for k in range(4):
            c += points[elems[e, k]]
        c = (c * 0.25 - lo) * scale
        codes[e] = morton_code(c[0], c[1], c[2])
    return codes


# =============================================================================
# 2. BUILD
# =============================================================================

@njit(cache=True)
def _build_nodes(codes, n_levels):
    n_nodes = ((BVH_DEGREE ** n_levels) - 1) // (BVH_DEGREE - 1)
    node_begin = np.zeros(n_nodes, dtype=np.int64)
    node_size = np.zeros(n_nodes, dtype=np.int64)
    node_leaf = np.zeros(n_nodes, dtype=np.bool_)
    node_size[0] = codes.shape[0]

    rb = np.zeros(BVH_DEGREE, dtype=np.int64)
    re = np.zeros(BVH_DEGREE, dtype=np.int64)

    for lvl in range(n_levels):
        lvl_begin = ((BVH_DEGREE ** lvl) - 1) // (BVH_DEGREE - 1)
        lvl_end = lvl_begin + BVH_DEGREE ** lvl
        for node in range(lvl_begin, lvl_end):
            size = node_size[node]
            if size == 0:
                continue
            if size == 1 or lvl == n_levels - 1:
                node_leaf[node] = True
                continue

            # Three binary splits of the node's range
            rb[0] = node_begin[node]
            re[0] = node_begin[node] + size
            n_ranges = 1
            for _ in range(3):
                for r in range(n_ranges - 1, -1, -1):
                    b = rb[r]
                    e = re[r]
                    if e - b > 1:
                        s = find_split(codes, b, e - 1) + 1
                    else:
                        s = e
                    rb[2 * r] = b
                    re[2 * r] = s
                    rb[2 * r + 1] = s
                    re[2 * r + 1] = e
                n_ranges *= 2

            child0 = node * BVH_DEGREE + 1
            for k in range(BVH_DEGREE):
                node_begin[child0 + k] = rb[k]
                node_size[child0 + k] = re[k] - rb[k]
    return node_begin, node_size, node_leaf


@njit(cache=True)
def _build_boxes(points, elems, order, node_begin, node_size, node_leaf, n_levels):
    n_nodes = node_size.shape[0]
    box_min = np.full((n_nodes, 3), np.inf)
    box_max = np.full((n_nodes, 3), -np.inf)
    for lvl in range(n_levels - 1, -1, -1):
        lvl_begin = ((BVH_DEGREE ** lvl) - 1) // (BVH_DEGREE - 1)
        lvl_end = lvl_begin + BVH_DEGREE ** lvl
        for node in range(lvl_begin, lvl_end):
            if node_size[node] == 0:
                continue
            if node_leaf[node]:
                for i in range(node_begin[node], node_begin[node] + node_size[node]):
                    e = order[i]
                    for k in range(4):
                        for d in range(3):
                            v = points[elems[e, k], d]
                            box_min[node, d] = min(box_min[node, d], v)
                            box_max[node, d] = max(box_max[node, d], v)
            else:
                child0 = node * BVH_DEGREE + 1
                for c in range(child0, child0 + BVH_DEGREE):
                    for d in range(3):
                        box_min[node, d] = min(box_min[node, d], box_min[c, d])
                        box_max[node, d] = max(box_max[node, d], box_max[c, d])
    return box_min, box_max


# =============================================================================
# 3. QUERY
# =============================================================================

@njit(cache=True)
def _query(p, node_begin, node_size, node_leaf, box_min, box_max,
           order, inv, sub, valid, n_levels, eps):
    bary = np.zeros(4)
    if node_size.shape[0] == 0 or node_size[0] == 0:
        return -1, bary

    stack = np.empty(BVH_DEGREE * n_levels + 1, dtype=np.int64)
    stack[0] = 0
    top = 1
    while top > 0:
        top -= 1
        node = stack[top]
        if node_size[node] == 0:
            continue
        outside = False
        for d in range(3):
            if p[d] < box_min[node, d] - eps or p[d] > box_max[node, d] + eps:
                outside = True
        if outside:
            continue

        if node_leaf[node]:
            for i in range(node_begin[node], node_begin[node] + node_size[node]):
                e = order[i]
                if not valid[e]:
                    continue
                q = p - sub[e]
                x = inv[e, 0, 0] * q[0] + inv[e, 0, 1] * q[1] + inv[e, 0, 2] * q[2]
                y = inv[e, 1, 0] * q[0] + inv[e, 1, 1] * q[1] + inv[e, 1, 2] * q[2]
                z = inv[e, 2, 0] * q[0] + inv[e, 2, 1] * q[1] + inv[e, 2, 2] * q[2]
                w = 1.0 - x - y - z
                if x >= -eps and y >= -eps and z >= -eps and w >= -eps:
                    bary[0] = x
                    bary[1] = y
                    bary[2] = z
                    bary[3] = w
                    return e, bary
        else:
            child0 = node * BVH_DEGREE + 1
            for c in range(child0 + BVH_DEGREE - 1, child0 - 1, -1):
                if node_size[c] > 0:
                    stack[top] = c
                    top += 1
    return -1, bary


@njit(cache=True, parallel=True)
def _query_many(ps, node_begin, node_size, node_leaf, box_min, box_max,
                order, inv, sub, valid, n_levels, eps):
    n = ps.shape[0]
    elems = np.empty(n, dtype=np.int64)
    barys = np.zeros((n, 4))
    for i in prange(n):
        e, b = _query(ps[i], node_begin, node_size, node_leaf, box_min, box_max,
                      order, inv, sub, valid, n_levels, eps)
        elems[i] = e
        barys[i] = b
    return elems, barys


# =============================================================================
# 4. PUBLIC WRAPPER
# =============================================================================

class PointLocationBVH:
    """
    Read-only point-location hierarchy over tetrahedra.

    Args:
        points: (N, 3) vertex positions.
        elems: (E, 4) tetrahedra.
        inv: (E, 3, 3) inverse edge matrices, ``xyz = inv @ (p - sub)``.
        sub: (E, 3) position of each tetrahedron's fourth vertex.

    Tetrahedra with an all-zero inverse (degenerate) are never reported.
    """

    __slots__ = ("n_levels", "order", "codes", "node_begin", "node_size",
                 "node_leaf", "box_min", "box_max", "_inv", "_sub", "_valid")

    def __init__(self, points: np.ndarray, elems: np.ndarray,
                 inv: np.ndarray, sub: np.ndarray) -> None:
        points = np.ascontiguousarray(points, dtype=np.float64)
        elems = np.ascontiguousarray(elems, dtype=np.int64)
        self._inv = np.ascontiguousarray(inv, dtype=np.float64).reshape(-1, 3, 3)
        self._sub = np.ascontiguousarray(sub, dtype=np.float64).reshape(-1, 3)
        self._valid = np.any(self._inv.reshape(-1, 9) != 0.0, axis=1)

        n = elems.shape[0]
        self.n_levels = 1 + math.ceil(math.log2(n) / 3) if n > 1 else 1
        if n == 0:
            self.order = np.zeros(0, dtype=np.int64)
            self.codes = np.zeros(0, dtype=np.int64)
            self.node_begin = np.zeros(1, dtype=np.int64)
            self.node_size = np.zeros(1, dtype=np.int64)
            self.node_leaf = np.zeros(1, dtype=np.bool_)
            self.box_min = np.full((1, 3), np.inf)
            self.box_max = np.full((1, 3), -np.inf)
            return

        lo = points.min(axis=0)
        span = points.max(axis=0) - lo
        scale = np.where(span > 0.0, 1.0 / np.where(span > 0.0, span, 1.0), 0.0)
        codes = _centroid_codes(points, elems, lo, scale)
        self.order = np.argsort(codes, kind="stable").astype(np.int64)
        self.codes = codes[self.order]

        self.node_begin, self.node_size, self.node_leaf = _build_nodes(self.codes, self.n_levels)
        self.box_min, self.box_max = _build_boxes(
            points, elems, self.order, self.node_begin, self.node_size,
            self.node_leaf, self.n_levels)

    @property
    def n_nodes(self) -> int:
        return self.node_size.shape[0]

    def query(self, p: np.ndarray) -> Tuple[int, np.ndarray]:
        """(tetrahedron, barycentric weights) containing ``p``; (-1, zeros) if none."""
        p = np.ascontiguousarray(p, dtype=np.float64).reshape(3)
        e, bary = _query(p, self.node_begin, self.node_size, self.node_leaf,
                         self.box_min, self.box_max, self.order, self._inv,
                         self._sub, self._valid, self.n_levels, _CONTAINS_EPS)
        return int(e), bary

    def query_many(self, ps: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Vectorized ``query`` over (M, 3) points."""
        ps = np.ascontiguousarray(ps, dtype=np.float64).reshape(-1, 3)
        return _query_many(ps, self.node_begin, self.node_size, self.node_leaf,
                           self.box_min, self.box_max, self.order, self._inv,
                           self._sub, self._valid, self.n_levels, _CONTAINS_EPS)
