# -*- coding: utf-8 -*-
import numpy as np
import pytest

from uplift_constraints import (
    DirectColorConstraint, DirectSurfaceConstraint, IndirectSurfaceConstraint,
    LinearConstraint, MeasurementConstraint, NLinearConstraint, SurfaceInfo,
)
from uplift_spectra import gray_spectrum
from uplift_uplifting import Uplifting, Vertex

from conftest import ILLM_A, ILLM_E, ILLM_LED, OBS_CIE, OBS_SHIFTED


@pytest.fixture
def uplifting():
    return Uplifting(observer_i=OBS_CIE, illuminant_i=ILLM_E, basis_i=0)


@pytest.fixture
def base_colr(csys, basis, smooth_coef):
    return csys(basis(smooth_coef))


def _led_vertex(base_colr, csys_led, basis, smooth_coef, **kw):
    cstr = DirectColorConstraint(
        colr_i=base_colr,
        cstr_j=(LinearConstraint(OBS_CIE, ILLM_LED, csys_led(basis(smooth_coef))),),
        **kw,
    )
    return Vertex("led", cstr)


# -- construction and positions --------------------------------------------------

def test_vertex_rejects_unknown_constraint():
    with pytest.raises(TypeError):
        Vertex("bad", object())


def test_positions(base_colr):
    v = Vertex("v", DirectColorConstraint(colr_i=base_colr, cstr_j=(
        LinearConstraint(0, 1, (0.1, 0.2, 0.3)),
        LinearConstraint(0, 2, (0.4, 0.5, 0.6), is_active=False),
    )))
    np.testing.assert_allclose(v.get_vertex_position(), base_colr)
    np.testing.assert_allclose(v.get_mismatch_position(), (0.1, 0.2, 0.3))
    assert v.is_position_shifting()

    m = Vertex("m", MeasurementConstraint(gray_spectrum(0.5)))
    np.testing.assert_array_equal(m.get_vertex_position(), np.zeros(3))
    np.testing.assert_array_equal(m.get_mismatch_position(), np.zeros(3))
    assert m.is_position_shifting()


def test_set_mismatch_position_moves_last_secondary(base_colr):
    v = Vertex("v", DirectColorConstraint(colr_i=base_colr, cstr_j=(
        LinearConstraint(0, 1, (0.1, 0.2, 0.3)),
        LinearConstraint(0, 2, (0.4, 0.5, 0.6)),
    )))
    v.set_mismatch_position((0.7, 0.7, 0.7))
    np.testing.assert_allclose(v.constraint.cstr_j[-1].colr_j, (0.7, 0.7, 0.7))
    np.testing.assert_allclose(v.constraint.cstr_j[0].colr_j, (0.1, 0.2, 0.3))

    bare = Vertex("b", DirectColorConstraint(colr_i=base_colr))
    bare.set_mismatch_position((0.7, 0.7, 0.7))
    assert bare.constraint.cstr_j == ()


def test_set_mismatch_position_skips_inactive_tail(base_colr):
    v = Vertex("v", DirectColorConstraint(colr_i=base_colr, cstr_j=(
        LinearConstraint(0, 1, (0.1, 0.2, 0.3)),
        LinearConstraint(0, 2, (0.4, 0.5, 0.6), is_active=False),
    )))
    v.set_mismatch_position((0.7, 0.7, 0.7))
    np.testing.assert_allclose(v.get_mismatch_position(), (0.7, 0.7, 0.7))
    np.testing.assert_allclose(v.constraint.cstr_j[1].colr_j, (0.4, 0.5, 0.6))

    idle = Vertex("i", DirectColorConstraint(colr_i=base_colr, cstr_j=(
        LinearConstraint(0, 1, (0.1, 0.2, 0.3), is_active=False),
    )))
    idle.set_mismatch_position((0.7, 0.7, 0.7))
    np.testing.assert_allclose(idle.constraint.cstr_j[0].colr_j, (0.1, 0.2, 0.3))


def test_set_surface():
    surface = SurfaceInfo(diffuse=(0.3, 0.2, 0.1), object_i=0)
    v = Vertex("s", DirectSurfaceConstraint())
    v.set_surface(surface)
    np.testing.assert_allclose(v.constraint.colr_i, (0.3, 0.2, 0.1))
    assert v.constraint.surface.is_valid
    with pytest.raises(TypeError):
        Vertex("c", DirectColorConstraint()).set_surface(surface)


def test_find_vertex(uplifting, base_colr):
    uplifting.verts += [Vertex("a", DirectColorConstraint(colr_i=base_colr)),
                        Vertex("b", DirectColorConstraint(colr_i=base_colr))]
    assert uplifting.find_vertex("b") == 1
    assert uplifting.find_vertex("c") is None
    assert uplifting.resource_key == (0, OBS_CIE, ILLM_E)


# -- realize ---------------------------------------------------------------------

def test_realize_direct_color(session_scene, uplifting, csys, base_colr):
    sample = Vertex("v", DirectColorConstraint(colr_i=base_colr)).realize(session_scene, uplifting)
    np.testing.assert_allclose(sample.colr, base_colr, atol=1e-4)
    np.testing.assert_allclose(csys(sample.spec), base_colr, atol=1e-4)


def test_realize_with_secondary(session_scene, uplifting, csys, csys_led, basis, smooth_coef, base_colr):
    v = _led_vertex(base_colr, csys_led, basis, smooth_coef)
    sample = v.realize(session_scene, uplifting)
    np.testing.assert_allclose(csys(sample.spec), base_colr, atol=1e-3)
    np.testing.assert_allclose(csys_led(sample.spec), csys_led(basis(smooth_coef)), atol=1e-3)


def test_realize_inactive_and_black_surface(session_scene, uplifting, basis, base_colr):
    inactive = Vertex("v", DirectColorConstraint(colr_i=base_colr), is_active=False)
    sample = inactive.realize(session_scene, uplifting)
    assert not np.any(sample.spec) and not np.any(sample.colr)
    assert sample.coef.shape == (basis.n_bases,)

    black = Vertex("s", DirectSurfaceConstraint(colr_i=(0.0, 0.0, 0.0)))
    assert not np.any(black.realize(session_scene, uplifting).spec)


def test_realize_measurement(session_scene, uplifting, basis, smooth_coef, csys):
    measure = basis(smooth_coef)
    sample = Vertex("m", MeasurementConstraint(measure)).realize(session_scene, uplifting)
    np.testing.assert_allclose(sample.spec, measure, atol=1e-4)
    np.testing.assert_allclose(sample.colr, csys(sample.spec))


def test_non_shifting_vertex_keeps_stored_position(session_scene, uplifting, base_colr):
    v = Vertex("v", DirectColorConstraint(colr_i=base_colr, is_base_active=False,
                                          cstr_j=(LinearConstraint(OBS_SHIFTED, ILLM_A, base_colr),)))
    assert not v.is_position_shifting()
    np.testing.assert_array_equal(v.realize(session_scene, uplifting).colr, base_colr)


# -- mismatching -----------------------------------------------------------------

def test_has_mismatching_direct(session_scene, uplifting, base_colr):
    def vertex(*systems, active=True):
        return Vertex("v", DirectColorConstraint(
            colr_i=base_colr,
            cstr_j=tuple(LinearConstraint(o, i, base_colr, is_active=active) for o, i in systems)))

    assert not vertex().has_mismatching(session_scene, uplifting)
    assert vertex((OBS_CIE, ILLM_LED)).has_mismatching(session_scene, uplifting)
    assert not vertex((OBS_CIE, ILLM_E)).has_mismatching(session_scene, uplifting)
    assert not vertex((OBS_CIE, ILLM_LED), (OBS_CIE, ILLM_LED)).has_mismatching(session_scene, uplifting)
    assert not vertex((OBS_CIE, ILLM_LED), active=False).has_mismatching(session_scene, uplifting)


def test_has_mismatching_other_kinds(session_scene, uplifting, base_colr):
    m = Vertex("m", MeasurementConstraint(gray_spectrum(0.5)))
    assert not m.has_mismatching(session_scene, uplifting)

    powers = (gray_spectrum(0.2), gray_spectrum(0.5))
    ind = Vertex("i", IndirectSurfaceConstraint(colr_i=base_colr, cstr_j=(
        NLinearConstraint(OBS_CIE, powers, base_colr),)))
    assert ind.has_mismatching(session_scene, uplifting)
    empty = Vertex("e", IndirectSurfaceConstraint(colr_i=base_colr, cstr_j=(
        NLinearConstraint(OBS_CIE, (), base_colr),)))
    assert not empty.has_mismatching(session_scene, uplifting)
    assert not Vertex("n", IndirectSurfaceConstraint(colr_i=base_colr)).has_mismatching(
        session_scene, uplifting)


def test_realize_mismatch(session_scene, uplifting, csys, csys_led, basis, smooth_coef, base_colr):
    v = _led_vertex(base_colr, csys_led, basis, smooth_coef)
    samples = v.realize_mismatch(session_scene, uplifting, seed=0, n_samples=16)
    assert len(samples) > 8
    for s in samples:
        np.testing.assert_allclose(csys(s.spec), base_colr, atol=5e-3)
        np.testing.assert_allclose(s.colr, csys_led(s.spec))


def test_realize_mismatch_without_volume(session_scene, uplifting, base_colr):
    v = Vertex("v", DirectColorConstraint(colr_i=base_colr))
    assert v.realize_mismatch(session_scene, uplifting, seed=0, n_samples=16) == []
    v.is_active = False
    assert v.realize_mismatch(session_scene, uplifting, seed=0, n_samples=16) == []


def test_sample_color_solid(session_scene, uplifting, csys):
    samples = uplifting.sample_color_solid(session_scene, seed=0, n_samples=16)
    assert len(samples) > 8
    for s in samples:
        np.testing.assert_allclose(s.colr, csys(s.spec))
