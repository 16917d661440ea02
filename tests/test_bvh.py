# -*- coding: utf-8 -*-
import numpy as np
import pytest
from scipy.spatial import Delaunay

from uplift_bvh import PointLocationBVH, expand_bits_10, find_msb, find_split, morton_code
from uplift_tesselation import Tesselation


def test_morton_bits():
    assert expand_bits_10(0) == 0
    assert expand_bits_10(1) == 1
    assert expand_bits_10(2) == 0b1000
    assert expand_bits_10(1023) == 0x09249249
    assert morton_code(1.0, 1.0, 1.0) == 0x3FFFFFFF
    assert morton_code(0.0, 0.0, 0.0) == 0
    # x carries the most significant bit of each triple
    assert morton_code(0.5, 0.0, 0.0) > morton_code(0.0, 0.5, 0.0) > morton_code(0.0, 0.0, 0.5)


@pytest.mark.parametrize("x, msb", [(0, -1), (1, 0), (8, 3), (9, 3), (0x3FFFFFFF, 29)])
def test_find_msb(x, msb):
    assert find_msb(x) == msb


def test_find_split():
    assert find_split(np.array([0, 1, 2, 3], dtype=np.int64), 0, 3) == 1
    assert find_split(np.array([5, 5, 5, 5], dtype=np.int64), 0, 3) == 1
    assert find_split(np.array([1, 2, 3, 32, 33], dtype=np.int64), 0, 4) == 2
    assert find_split(np.array([0, 0, 0, 7], dtype=np.int64), 0, 3) == 2


def _tesselation(points):
    n = points.shape[0]
    return Tesselation.build(points, np.zeros((n, 4)), np.zeros((n, 2)), n,
                             np.zeros(0, dtype=np.int64), [])


@pytest.mark.parametrize("n_points", [5, 40, 300])
def test_agrees_with_qhull_point_location(n_points):
    rng = np.random.default_rng(n_points)
    points = rng.uniform(size=(n_points, 3))
    tess = _tesselation(points)
    reference = Delaunay(points)

    queries = rng.uniform(-0.1, 1.1, size=(200, 3))
    elems, barys = tess.bvh.query_many(queries)
    for p, e, bary in zip(queries, elems, barys):
        inside = reference.find_simplex(p) >= 0
        if not inside:
            assert e == -1
            continue
        assert e >= 0
        assert bary.sum() == pytest.approx(1.0)
        assert np.all(bary >= -1e-6)
        np.testing.assert_allclose(bary @ points[tess.elems[e]], p, atol=1e-9)


def test_single_query_matches_batch():
    rng = np.random.default_rng(7)
    points = rng.uniform(size=(50, 3))
    tess = _tesselation(points)
    p = points.mean(axis=0)
    e, bary = tess.bvh.query(p)
    elems, barys = tess.bvh.query_many(p[None])
    assert e == elems[0] >= 0
    np.testing.assert_allclose(bary, barys[0])


def test_tree_shape():
    rng = np.random.default_rng(1)
    tess = _tesselation(rng.uniform(size=(200, 3)))
    bvh = tess.bvh
    n = tess.n_elems
    assert bvh.n_levels == 1 + int(np.ceil(np.log2(n) / 3))
    assert bvh.n_nodes == (8 ** bvh.n_levels - 1) // 7
    assert bvh.node_size[0] == n
    assert np.all(np.diff(bvh.codes) >= 0)
    assert sorted(bvh.order.tolist()) == list(range(n))
    # leaves partition the primitives
    assert bvh.node_size[bvh.node_leaf].sum() == n


def test_empty_hierarchy():
    bvh = PointLocationBVH(np.zeros((0, 3)), np.zeros((0, 4), dtype=np.int64),
                           np.zeros((0, 3, 3)), np.zeros((0, 3)))
    e, bary = bvh.query(np.zeros(3))
    assert e == -1
    assert not np.any(bary)


def test_degenerate_elements_are_skipped():
    points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    elems = np.array([[0, 1, 2, 3]])
    bvh = PointLocationBVH(points, elems, np.zeros((1, 3, 3)), points[3][None])
    assert bvh.query(np.full(3, 0.1))[0] == -1


def test_too_few_points_give_no_elements():
    tess = _tesselation(np.eye(3))
    assert tess.n_elems == 0
    assert tess.query_tetrahedron(np.full(3, 0.3))[0] == -1
