# -*- coding: utf-8 -*-
import numpy as np
import pytest

from uplift_context import SolverContext
from uplift_solver import (
    DIRECTION_CHUNK, gen_unit_dirs, solve_color_solid, solve_mismatch_solid,
    solve_spectrum, solve_spectrum_coef, solve_spectrum_from_measurement,
)
from uplift_spectra import IndirectColorSystem, gray_spectrum

from conftest import ILLM_A, OBS_CIE, OBS_SHIFTED


# -- directions ------------------------------------------------------------------

def test_unit_dirs_are_normalized_and_deterministic():
    a = gen_unit_dirs(6, 40, seed=11)
    b = gen_unit_dirs(6, 40, seed=11)
    assert a.shape == (40, 6)
    np.testing.assert_allclose(np.linalg.norm(a, axis=1), 1.0, atol=1e-12)
    np.testing.assert_array_equal(a, b)
    assert not np.allclose(a, gen_unit_dirs(6, 40, seed=12))


def test_unit_dirs_chunks_are_independent_of_count():
    short = gen_unit_dirs(3, DIRECTION_CHUNK, seed=5)
    long = gen_unit_dirs(3, 4 * DIRECTION_CHUNK, seed=5)
    np.testing.assert_array_equal(long[:DIRECTION_CHUNK], short)


def test_unit_dirs_cover_both_signs():
    dirs = gen_unit_dirs(3, 256, seed=1)
    assert np.all(dirs.max(axis=0) > 0.5)
    assert np.all(dirs.min(axis=0) < -0.5)


# -- single metamers ---------------------------------------------------------

def test_round_trip_single_system(csys, basis, smooth_coef):
    target = csys(basis(smooth_coef))
    spec, coef = solve_spectrum([(csys, target)], basis)
    np.testing.assert_allclose(csys(spec), target, atol=1e-4)
    assert np.all((coef >= -1.0) & (coef <= 1.0))
    assert np.all((spec >= 0.0) & (spec <= 1.0))


def test_round_trip_two_systems(session_scene, csys, basis, smooth_coef):
    other = session_scene.csys_of(OBS_SHIFTED, ILLM_A)
    refl = basis(smooth_coef)
    pairs = [(csys, csys(refl)), (other, other(refl))]
    spec, _ = solve_spectrum(pairs, basis)
    for system, colr in pairs:
        np.testing.assert_allclose(system(spec), colr, atol=1e-3)


def test_metamer_prefers_flat_spectrum(csys, basis):
    gray = gray_spectrum(0.3)
    spec, _ = solve_spectrum([(csys, csys(gray))], basis)
    np.testing.assert_allclose(spec, gray, atol=1e-3)


def test_infeasible_constraints_do_not_raise(csys, basis):
    coef = solve_spectrum_coef([(csys, np.array([5.0, -2.0, 7.0]))], basis)
    assert coef.shape == (basis.n_bases,)
    assert np.all(np.isfinite(coef))
    assert np.all(np.abs(coef) <= 1.0)


def test_no_constraints_returns_gray(basis):
    spec, _ = solve_spectrum([], basis)
    np.testing.assert_allclose(spec, 0.5, atol=1e-9)


def test_measurement_fit(basis, smooth_coef):
    measure = basis(smooth_coef)
    spec, coef = solve_spectrum_from_measurement(measure, basis)
    np.testing.assert_allclose(spec, measure, atol=1e-4)
    np.testing.assert_allclose(coef, smooth_coef, atol=1e-3)


def test_measurement_fit_keeps_reflectance_range(basis):
    measure = np.linspace(-0.5, 1.5, basis.func.shape[0])
    spec, coef = solve_spectrum_from_measurement(measure, basis)
    assert np.all((spec >= 0.0) & (spec <= 1.0))
    assert np.all(np.abs(coef) <= 1.0)


def test_nonlinear_constraint_round_trip(session_scene, csys, basis, smooth_coef):
    observer = session_scene.get_observer(OBS_CIE)
    illm = session_scene.get_illuminant(ILLM_A)
    indirect = IndirectColorSystem(observer, (0.2 * illm, 0.5 * illm, 0.3 * illm))
    refl = basis(smooth_coef)
    spec, _ = solve_spectrum([(csys, csys(refl))], basis,
                             nlinear_constraints=[(indirect, indirect(refl))])
    np.testing.assert_allclose(csys(spec), csys(refl), atol=1e-3)
    np.testing.assert_allclose(indirect(spec), indirect(refl), atol=1e-3)


# -- mismatch volumes -----------------------------------------------------------

def test_mismatch_samples_hold_fixed_constraint(csys, csys_led, basis, smooth_coef):
    base = csys(basis(smooth_coef))
    samples = solve_mismatch_solid([csys, csys_led], [(csys, base)], basis, seed=0, n_samples=32)
    assert len(samples) > 16
    for s in samples:
        np.testing.assert_allclose(csys(s.spec), base, atol=5e-3)
        np.testing.assert_allclose(s.colr, csys_led(s.spec), atol=1e-12)
        assert np.all(np.abs(s.coef) <= 1.0)


def test_mismatch_volume_has_extent(csys, csys_led, basis, smooth_coef):
    base = csys(basis(smooth_coef))
    samples = solve_mismatch_solid([csys, csys_led], [(csys, base)], basis, seed=0, n_samples=64)
    colrs = np.array([s.colr for s in samples])
    assert np.all(colrs.max(axis=0) - colrs.min(axis=0) > 5e-4)


def test_mismatch_sampling_is_deterministic_across_workers(csys, csys_led, basis, smooth_coef):
    base = csys(basis(smooth_coef))
    serial = solve_mismatch_solid([csys, csys_led], [(csys, base)], basis, seed=3, n_samples=32)
    with SolverContext(max_workers=4) as ctx:
        threaded = solve_mismatch_solid([csys, csys_led], [(csys, base)], basis,
                                        seed=3, n_samples=32, context=ctx)
    assert len(serial) == len(threaded)
    for a, b in zip(serial, threaded):
        np.testing.assert_array_equal(a.coef, b.coef)


def test_infeasible_mismatch_returns_no_samples(csys, csys_led, basis):
    samples = solve_mismatch_solid([csys, csys_led], [(csys, np.array([4.0, 4.0, -1.0]))],
                                   basis, seed=0, n_samples=16)
    assert samples == []


def test_mismatch_rejects_mixed_objectives(session_scene, csys, basis):
    indirect = IndirectColorSystem(session_scene.get_observer(OBS_CIE),
                                   (session_scene.get_illuminant(ILLM_A),))
    with pytest.raises(TypeError):
        solve_mismatch_solid([csys, indirect], [], basis, seed=0, n_samples=4)


def test_color_solid_spans_gamut(csys, basis):
    samples = solve_color_solid(csys, basis, seed=4, n_samples=64)
    assert len(samples) >= 48
    colrs = np.array([s.colr for s in samples])
    lum = colrs @ np.array([0.2126729, 0.7151522, 0.0721750])
    assert lum.min() < 0.2
    assert lum.max() > 0.8


def test_indirect_mismatch_samples(session_scene, csys, basis, smooth_coef):
    observer = session_scene.get_observer(OBS_CIE)
    illm = session_scene.get_illuminant(ILLM_A)
    indirect = IndirectColorSystem(observer, (0.1 * illm, 0.6 * illm, 0.3 * illm))
    base = csys(basis(smooth_coef))
    samples = solve_mismatch_solid([indirect], [(csys, base)], basis, seed=2, n_samples=8)
    assert len(samples) > 0
    held = [np.allclose(csys(s.spec), base, atol=5e-3) for s in samples]
    assert np.mean(held) >= 0.5
    for s in samples:
        np.testing.assert_allclose(s.colr, indirect(s.spec), atol=1e-10)
