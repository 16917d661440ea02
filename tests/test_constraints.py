# -*- coding: utf-8 -*-
import dataclasses

import numpy as np
import pytest

from uplift_config import WAVELENGTH_SAMPLES
from uplift_constraints import (
    DirectColorConstraint, DirectSurfaceConstraint, IndirectSurfaceConstraint,
    LinearConstraint, MeasurementConstraint, NLinearConstraint, SurfaceInfo,
    has_equal_mismatching,
)
from uplift_powerseries import PathRecord, PathVertex, build_power_series, expand_path
from uplift_spectra import gray_spectrum


def _direct(colr_i=(0.2, 0.3, 0.4), last=(0.5, 0.5, 0.5), last_system=(1, 2), **kw):
    return DirectColorConstraint(
        colr_i=colr_i,
        cstr_j=(LinearConstraint(0, 1, (0.1, 0.1, 0.1)),
                LinearConstraint(*last_system, colr_j=last)),
        **kw,
    )


# -- value semantics -------------------------------------------------------------

def test_colors_are_validated_and_frozen():
    c = LinearConstraint(colr_j=[0.1, 0.2, 0.3])
    assert c.colr_j.dtype == np.float64
    with pytest.raises(ValueError):
        c.colr_j[0] = 1.0
    with pytest.raises(ValueError):
        LinearConstraint(colr_j=(0.1, 0.2))
    with pytest.raises(dataclasses.FrozenInstanceError):
        c.cmfs_j = 3


def test_equality_uses_tolerance():
    a = _direct()
    b = _direct(colr_i=(0.2 + 1e-9, 0.3, 0.4))
    assert a == b
    assert a != _direct(colr_i=(0.25, 0.3, 0.4))
    assert a != _direct(is_base_active=False)


def test_secondary_types_are_checked():
    with pytest.raises(TypeError):
        DirectColorConstraint(cstr_j=(NLinearConstraint(),))
    with pytest.raises(TypeError):
        IndirectSurfaceConstraint(cstr_j=(LinearConstraint(),))


def test_measurement_shape_is_checked():
    MeasurementConstraint(gray_spectrum(0.5))
    with pytest.raises(ValueError):
        MeasurementConstraint(np.ones(WAVELENGTH_SAMPLES + 1))


def test_power_series_shape_is_checked():
    NLinearConstraint(powr_j=(gray_spectrum(1.0),))
    with pytest.raises(ValueError):
        NLinearConstraint(powr_j=(np.ones(3),))


def test_surface_validity():
    assert not SurfaceInfo.invalid().is_valid
    surface = SurfaceInfo(position=(1, 2, 3), normal=(0, 0, 1), diffuse=(0.5, 0.5, 0.5), object_i=2)
    assert surface.is_valid
    assert surface == dataclasses.replace(surface)


def test_constraints_are_unhashable():
    with pytest.raises(TypeError):
        hash(_direct())


# -- mismatching equality --------------------------------------------------------

def test_moving_free_variable_keeps_mismatching():
    assert has_equal_mismatching(_direct(), _direct(last=(0.9, 0.1, 0.3)))


def test_free_variable_system_change_breaks_mismatching():
    assert not has_equal_mismatching(_direct(), _direct(last_system=(1, 0)))


def test_base_color_change_breaks_mismatching():
    assert not has_equal_mismatching(_direct(), _direct(colr_i=(0.3, 0.3, 0.4)))
    assert not has_equal_mismatching(_direct(), _direct(is_base_active=False))


def test_leading_secondary_change_breaks_mismatching():
    a = _direct()
    b = dataclasses.replace(a, cstr_j=(LinearConstraint(0, 1, (0.2, 0.1, 0.1)), a.cstr_j[1]))
    assert not has_equal_mismatching(a, b)
    c = dataclasses.replace(a, cstr_j=a.cstr_j[:1])
    assert not has_equal_mismatching(a, c)


def test_mismatching_across_kinds():
    m = MeasurementConstraint(gray_spectrum(0.5))
    assert has_equal_mismatching(m, MeasurementConstraint(gray_spectrum(0.1)))
    assert not has_equal_mismatching(m, _direct())
    assert not has_equal_mismatching(_direct(), DirectSurfaceConstraint(colr_i=(0.2, 0.3, 0.4)))


def test_mismatching_without_secondaries():
    a = DirectColorConstraint(colr_i=(0.2, 0.3, 0.4))
    assert has_equal_mismatching(a, DirectColorConstraint(colr_i=(0.2, 0.3, 0.4)))


def test_indirect_mismatching_compares_power_series():
    p = (gray_spectrum(0.1), gray_spectrum(0.4))
    a = IndirectSurfaceConstraint(colr_i=(0.5, 0.5, 0.5), cstr_j=(NLinearConstraint(0, p, (0.1, 0.2, 0.3)),))
    b = IndirectSurfaceConstraint(colr_i=(0.5, 0.5, 0.5), cstr_j=(NLinearConstraint(0, p, (0.3, 0.2, 0.1)),))
    c = IndirectSurfaceConstraint(colr_i=(0.5, 0.5, 0.5),
                                  cstr_j=(NLinearConstraint(0, p[:1], (0.1, 0.2, 0.3)),))
    assert has_equal_mismatching(a, b)
    assert not has_equal_mismatching(a, c)


def test_mismatching_rejects_unknown_types():
    with pytest.raises(TypeError):
        has_equal_mismatching(object(), object())


# -- power series ------------------------------------------------------------------

def _path(n_hits, L=1.0):
    wvls = np.array([400.0, 500.0, 600.0, 700.0])
    hit = PathVertex(a=np.full(4, 0.5), remainder=np.full(4, 0.1))
    return PathRecord(wvls=wvls, L=np.full(4, L), vertices=[hit] * n_hits)


def test_expand_path_enumerates_subsets():
    samples = expand_path(_path(2), gray_spectrum(0.5))
    assert len(samples) == 4
    assert sorted(s.power for s in samples) == [0, 1, 1, 2]


def test_expand_path_divides_out_reflectance():
    # rendered with r = 0.5: each hit contributed 0.5·0.5 + 0.1 = 0.35
    rendered = 0.35 ** 2
    samples = expand_path(_path(2, L=rendered), gray_spectrum(0.5))
    by_power = {s.power: s.values for s in samples}
    np.testing.assert_allclose(by_power[0], 0.1 * 0.1)
    np.testing.assert_allclose(by_power[2], 0.5 * 0.5)
    total = sum(s.values * 0.5 ** s.power for s in samples)
    np.testing.assert_allclose(total, rendered)


def test_build_power_series_bins_by_power():
    samples = []
    for _ in range(8):
        samples += expand_path(_path(1, L=0.35), gray_spectrum(0.5))
    series = build_power_series(samples, spp=8)
    assert len(series) == 2
    assert all(p.shape == (WAVELENGTH_SAMPLES,) for p in series)
    assert np.count_nonzero(series[1]) == 4
    assert np.all(series[1] >= series[0])


def test_build_power_series_edge_cases():
    assert build_power_series([], spp=4) == ()
    with pytest.raises(ValueError):
        build_power_series([], spp=0)
    faint = expand_path(_path(1, L=1e-6), gray_spectrum(0.5))
    assert all(not np.any(p) for p in build_power_series(faint, spp=1))
