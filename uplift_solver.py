# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Spectrum Solver and Mismatch-Volume Sampler
===========================================
Both solvers work on basis coefficients ``c`` (bounded to [-1, 1]) and keep
the reflectance ``B c`` inside [0, 1] on every wavelength.

1. ``solve_spectrum`` finds one metamer: the spectrum closest to a flat gray
   at the target luminance that reproduces every constraint color exactly.
   SLSQP with analytic Jacobians; interreflection constraints
   (``IndirectColorSystem``) enter as nonlinear equalities.
2. ``solve_mismatch_solid`` samples the boundary of a metamer mismatch
   volume: for a set of unit directions it finds the extremal metamer along
   each direction, with the remaining constraints held within a small
   tolerance. For linear color systems each direction is a linear program
   (HiGHS). For interreflection objectives the power series objective is
   maximized with SLSQP from a linear starting point.

Failure handling
----------------
Neither solver raises for infeasible inputs. ``solve_spectrum`` returns its
best effort (falling back to a bounded least-squares fit if the optimizer
output is unusable). ``solve_mismatch_solid`` drops directions whose solve
failed or produced a zero/non-finite result, so fewer than ``n_samples``
samples may come back.

Determinism
-----------
Directions are drawn in chunks of ``DIRECTION_CHUNK``; chunk ``i`` uses the
stream ``numpy.random.default_rng((seed, i))``. The output depends on
``(seed, n_samples)`` only, never on the worker count.

References:
    - Mackiewicz, M., Rivertz, H. J., Finlayson, G. (2019). "Spherical
      sampling methods for the calculation of metamer mismatch volumes".
      JOSA A 36(1). (Orthonormal objective basis, listing 9.)
"""

from __future__ import annotations

import logging
import math
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
from numba import njit, prange
from scipy.optimize import linprog, minimize

from uplift_colorengine import luminance
from uplift_config import get_settings
from uplift_context import SolverContext, run_map
from uplift_spectra import (
    Basis, Coefficients, Color, ColorSystem, IndirectColorSystem, Spectrum,
    gray_spectrum, stack_finalized,
)

__all__ = [
    "DIRECTION_CHUNK",
    "MismatchSample",
    "gen_unit_dirs",
    "solve_spectrum_coef",
    "solve_spectrum",
    "solve_spectrum_from_measurement",
    "solve_mismatch_solid",
    "solve_color_solid",
]

logger = logging.getLogger("uplift.solver")

DIRECTION_CHUNK: int = 16

AnySystem = Union[ColorSystem, IndirectColorSystem]
LinearPair = Tuple[ColorSystem, Color]
NLinearPair = Tuple[IndirectColorSystem, Color]


class MismatchSample(NamedTuple):
    """One metamer on a mismatch volume boundary."""
    colr: Color
    spec: Spectrum
    coef: Coefficients


# ---------------------------------------------------------------------------
# 1. Direction sampling
# ---------------------------------------------------------------------------

@njit(cache=True, fastmath=True)
def _inv_gaussian_cdf(u: np.ndarray) -> np.ndarray:
    """
    sqrt(2)·erfinv(u) for u in (-1, 1), elementwise.

    Winitzki's closed-form erfinv approximation (a = 0.147); accuracy is
    irrelevant here beyond producing an isotropic direction distribution.
    """
    a = 0.147
    two_over_pi_a = 2.0 / (np.pi * a)
    out = np.empty_like(u)
    u_flat = u.ravel()
    out_flat = out.ravel()
    for i in range(u.size):
        x = min(max(u_flat[i], -0.9999999), 0.9999999)
        ln = np.log(1.0 - x * x)
        t = two_over_pi_a + 0.5 * ln
        y = np.sqrt(np.sqrt(t * t - ln / a) - t)
        out_flat[i] = np.sqrt(2.0) * (y if x >= 0.0 else -y)
    return out


@njit(cache=True, fastmath=True, parallel=True)
def _normalize_rows(v: np.ndarray) -> np.ndarray:
    out = np.empty_like(v)
    for i in prange(v.shape[0]):
        norm = 0.0
        for j in range(v.shape[1]):
            norm += v[i, j] * v[i, j]
        norm = np.sqrt(norm)
        if norm > 0.0:
            for j in range(v.shape[1]):
                out[i, j] = v[i, j] / norm
        else:
            for j in range(v.shape[1]):
                out[i, j] = 0.0
            out[i, 0] = 1.0
    return out


def gen_unit_dirs(n_dims: int, n_samples: int, seed: int) -> np.ndarray:
    """
    Isotropic unit directions, shape (n_samples, n_dims).

    The first ``k`` rows for a given seed are identical for every
    ``n_samples >= k`` rounded up to a full chunk.
    """
    if n_dims <= 0:
        raise ValueError(f"n_dims must be positive, got {n_dims}")
    if n_samples <= 0:
        return np.zeros((0, n_dims), dtype=np.float64)

    n_chunks = math.ceil(n_samples / DIRECTION_CHUNK)
    chunks = []
    for i in range(n_chunks):
        rng = np.random.default_rng((int(seed), i))
        chunks.append(rng.uniform(-1.0, 1.0, size=(DIRECTION_CHUNK, n_dims)))
    u = np.ascontiguousarray(np.vstack(chunks)[:n_samples])
    return _normalize_rows(_inv_gaussian_cdf(u))


# ---------------------------------------------------------------------------
# 2. Constraint helpers
# ---------------------------------------------------------------------------

def _linear_system(csys: ColorSystem, basis: Basis) -> np.ndarray:
    """A = Mᵀ B, so that csys(basis(c)) = A c; shape (3, n_bases)."""
    return csys.finalize().T @ basis.func


def _nlinear_eval(csys: IndirectColorSystem, basis: Basis, coef: np.ndarray
                  ) -> Tuple[np.ndarray, np.ndarray]:
    """Color and (3, n_bases) Jacobian of an interreflection system at ``coef``."""
    r = basis.func @ coef
    colr = np.zeros(3)
    jac = np.zeros((3, basis.n_bases))
    for j, m in enumerate(csys.finalize()):
        colr += (r ** j) @ m
        if j > 0:
            jac += (m * (j * r ** (j - 1))[:, None]).T @ basis.func
    return colr, jac


def _split_pairs(pairs: Sequence[Tuple[AnySystem, Color]]
                 ) -> Tuple[List[LinearPair], List[NLinearPair]]:
    linear, nlinear = [], []
    for csys, colr in pairs:
        colr = np.asarray(colr, dtype=np.float64)
        if isinstance(csys, ColorSystem):
            linear.append((csys, colr))
        elif isinstance(csys, IndirectColorSystem):
            nlinear.append((csys, colr))
        else:
            raise TypeError(f"Unsupported color system type: {type(csys).__name__}")
    return linear, nlinear


def _range_constraints(basis: Basis) -> dict:
    """0 <= B c <= 1 as an SLSQP inequality."""
    func = basis.func
    jac = np.vstack([func, -func])
    return {
        "type": "ineq",
        "fun": lambda c: np.concatenate([func @ c, 1.0 - func @ c]),
        "jac": lambda c: jac,
    }


def _equality_constraints(
    basis: Basis,
    linear: Sequence[LinearPair],
    nlinear: Sequence[NLinearPair],
    tol: float = 0.0,
) -> List[dict]:
    """
    SLSQP dictionaries for color equalities; with ``tol > 0`` each equality
    becomes the pair of inequalities |f(c) - b| <= tol.
    """
    cons: List[dict] = []
    for csys, colr in linear:
        A = _linear_system(csys, basis)
        b = colr
        if tol > 0.0:
            cons.append({"type": "ineq",
                         "fun": lambda c, A=A, b=b: np.concatenate([tol - (A @ c - b), tol + (A @ c - b)]),
                         "jac": lambda c, A=A: np.vstack([-A, A])})
        else:
            cons.append({"type": "eq",
                         "fun": lambda c, A=A, b=b: A @ c - b,
                         "jac": lambda c, A=A: A})
    for csys, colr in nlinear:
        def fun(c, csys=csys, b=colr):
            return _nlinear_eval(csys, basis, c)[0] - b

        def jac(c, csys=csys):
            return _nlinear_eval(csys, basis, c)[1]

        if tol > 0.0:
            cons.append({"type": "ineq",
                         "fun": lambda c, f=fun: np.concatenate([tol - f(c), tol + f(c)]),
                         "jac": lambda c, g=jac: np.vstack([-g(c), g(c)])})
        else:
            cons.append({"type": "eq", "fun": fun, "jac": jac})
    return cons


def _lstsq_coef(basis: Basis, target: Spectrum) -> Coefficients:
    coef, *_ = np.linalg.lstsq(basis.func, target, rcond=None)
    return np.clip(coef, -1.0, 1.0)


def _minimize_coef(objective, gradient, x0: np.ndarray, constraints: List[dict],
                   max_iters: int) -> Tuple[Optional[np.ndarray], bool, str]:
    res = minimize(
        objective, x0, jac=gradient, method="SLSQP",
        bounds=[(-1.0, 1.0)] * x0.shape[0],
        constraints=constraints,
        options={"maxiter": max_iters, "ftol": 1e-10},
    )
    x = np.asarray(res.x, dtype=np.float64)
    if not np.all(np.isfinite(x)):
        return None, False, str(res.message)
    return np.clip(x, -1.0, 1.0), bool(res.success), str(res.message)


# ---------------------------------------------------------------------------
# 3. Single metamer
# ---------------------------------------------------------------------------

def solve_spectrum_coef(
    linear_constraints: Sequence[LinearPair],
    basis: Basis,
    nlinear_constraints: Sequence[NLinearPair] = (),
    max_iters: Optional[int] = None,
) -> Coefficients:
    """
    Coefficients of the metamer closest to a flat gray.

    The gray level is the luminance of the first constraint color (of the
    first nonlinear constraint if there are no linear ones, 0.5 if there
    are none at all), clamped to [0, 1].

    Args:
        linear_constraints: (ColorSystem, Color) equalities.
        basis: Reflectance basis.
        nlinear_constraints: (IndirectColorSystem, Color) equalities.
        max_iters: SLSQP iteration cap; defaults to the configured value.

    Returns:
        (n_bases,) coefficients within [-1, 1]. Never raises for infeasible
        constraint sets; the best-effort result is returned instead.
    """
    if max_iters is None:
        max_iters = get_settings().solver_max_iters
    linear, nlinear = _split_pairs(list(linear_constraints) + list(nlinear_constraints))

    first = linear[0][1] if linear else (nlinear[0][1] if nlinear else None)
    lum = 0.5 if first is None else float(np.clip(luminance(first), 0.0, 1.0))
    target = gray_spectrum(lum)
    func = basis.func

    def objective(c):
        d = func @ c - target
        return float(d @ d)

    def gradient(c):
        return 2.0 * (func.T @ (func @ c - target))

    x0 = _lstsq_coef(basis, target)
    if not linear and not nlinear:
        return x0

    cons = [_range_constraints(basis)] + _equality_constraints(basis, linear, nlinear)
    coef, success, message = _minimize_coef(objective, gradient, x0, cons, max_iters)
    if coef is None:
        logger.debug("Spectrum solve produced non-finite output (%s); using least-squares fit", message)
        return x0
    if not success:
        logger.debug("Spectrum solve did not converge: %s", message)
    return coef


def solve_spectrum(
    linear_constraints: Sequence[LinearPair],
    basis: Basis,
    nlinear_constraints: Sequence[NLinearPair] = (),
    max_iters: Optional[int] = None,
) -> Tuple[Spectrum, Coefficients]:
    """Metamer spectrum (clamped to [0, 1]) and its coefficients; see ``solve_spectrum_coef``."""
    coef = solve_spectrum_coef(linear_constraints, basis, nlinear_constraints, max_iters)
    return np.clip(basis(coef), 0.0, 1.0), coef


def solve_spectrum_from_measurement(
    measure: Spectrum,
    basis: Basis,
    max_iters: Optional[int] = None,
) -> Tuple[Spectrum, Coefficients]:
    """
    Closest representable reflectance to a measured spectrum.

    Least squares in the basis, with the reconstruction kept in [0, 1].
    """
    if max_iters is None:
        max_iters = get_settings().solver_max_iters
    target = np.clip(np.asarray(measure, dtype=np.float64), 0.0, 1.0)
    func = basis.func

    def objective(c):
        d = func @ c - target
        return float(d @ d)

    def gradient(c):
        return 2.0 * (func.T @ (func @ c - target))

    x0 = _lstsq_coef(basis, target)
    coef, success, message = _minimize_coef(
        objective, gradient, x0, [_range_constraints(basis)], max_iters)
    if coef is None:
        logger.debug("Measurement fit failed (%s); using least-squares fit", message)
        coef = x0
    return np.clip(basis(coef), 0.0, 1.0), coef


# ---------------------------------------------------------------------------
# 4. Mismatch volumes
# ---------------------------------------------------------------------------

def _orthonormal_objective(systems: Sequence[ColorSystem]) -> np.ndarray:
    """Orthonormal basis U of span(S), S = [M_1 | M_2 | ...]; (n_wavelengths, 3k)."""
    U, _, _ = np.linalg.svd(stack_finalized(systems), full_matrices=False)
    return U


def _sample_linear(
    objectives: Sequence[ColorSystem],
    linear_fixed: Sequence[LinearPair],
    basis: Basis,
    dirs: np.ndarray,
    context: Optional[SolverContext],
) -> List[Optional[Coefficients]]:
    tol = get_settings().constraint_tol
    func = basis.func
    n_bases = basis.n_bases

    A_ub = [func, -func]
    b_ub = [np.ones(func.shape[0]), np.zeros(func.shape[0])]
    for csys, colr in linear_fixed:
        A = _linear_system(csys, basis)
        A_ub += [A, -A]
        b_ub += [colr + tol, -colr + tol]
    A_ub = np.vstack(A_ub)
    b_ub = np.concatenate(b_ub)

    # Directions live in the orthonormalized objective space
    projection = func.T @ _orthonormal_objective(objectives)

    def solve_one(d: np.ndarray) -> Optional[Coefficients]:
        a = projection @ d
        res = linprog(-a, A_ub=A_ub, b_ub=b_ub, bounds=[(-1.0, 1.0)] * n_bases,
                      method="highs")
        if res.status != 0 or res.x is None:
            return None
        return np.asarray(res.x, dtype=np.float64)

    return run_map(context, solve_one, list(dirs))


def _sample_nlinear(
    objectives: Sequence[IndirectColorSystem],
    linear_fixed: Sequence[LinearPair],
    nlinear_fixed: Sequence[NLinearPair],
    basis: Basis,
    dirs: np.ndarray,
    context: Optional[SolverContext],
) -> List[Optional[Coefficients]]:
    settings = get_settings()
    x0 = solve_spectrum_coef(linear_fixed, basis, nlinear_fixed)
    cons = [_range_constraints(basis)] \
        + _equality_constraints(basis, linear_fixed, nlinear_fixed, tol=settings.constraint_tol)

    def solve_one(d: np.ndarray) -> Optional[Coefficients]:
        d_parts = d.reshape(len(objectives), 3)

        def objective(c):
            return -float(sum(_nlinear_eval(o, basis, c)[0] @ w
                              for o, w in zip(objectives, d_parts)))

        def gradient(c):
            return -sum(w @ _nlinear_eval(o, basis, c)[1]
                        for o, w in zip(objectives, d_parts))

        coef, _, _ = _minimize_coef(objective, gradient, x0.copy(), cons,
                                    settings.solver_max_iters)
        return coef

    return run_map(context, solve_one, list(dirs))


def solve_mismatch_solid(
    objectives: Sequence[AnySystem],
    fixed_constraints: Sequence[Tuple[AnySystem, Color]],
    basis: Basis,
    seed: int,
    n_samples: int,
    context: Optional[SolverContext] = None,
) -> List[MismatchSample]:
    """
    Samples the boundary of a metamer mismatch volume.

    Args:
        objectives: Color systems spanning the sampled space; the volume is
            reported in the last one. All linear or all interreflection.
        fixed_constraints: (system, color) pairs held within
            ``constraint_tol`` for every sample.
        basis: Reflectance basis.
        seed: Seed of the direction streams.
        n_samples: Number of directions.
        context: Optional worker pool.

    Returns:
        Up to ``n_samples`` samples in direction order. Callers are expected
        to check that a mismatch volume exists at all; with a single
        unconstrained objective this samples the object color solid.
    """
    if not objectives:
        raise ValueError("At least one objective color system is required")
    is_nlinear = [isinstance(o, IndirectColorSystem) for o in objectives]
    if any(is_nlinear) and not all(is_nlinear):
        raise TypeError("Objectives must be all ColorSystem or all IndirectColorSystem")
    linear_fixed, nlinear_fixed = _split_pairs(fixed_constraints)

    dirs = gen_unit_dirs(3 * len(objectives), n_samples, seed)
    if all(is_nlinear):
        coefs = _sample_nlinear(objectives, linear_fixed, nlinear_fixed, basis, dirs, context)
    else:
        coefs = _sample_linear(objectives, linear_fixed, basis, dirs, context)

    target = objectives[-1]
    samples: List[MismatchSample] = []
    for coef in coefs:
        if coef is None or not np.all(np.isfinite(coef)) or not np.any(coef):
            continue
        coef = np.clip(coef, -1.0, 1.0)
        spec = np.clip(basis(coef), 0.0, 1.0)
        samples.append(MismatchSample(target(spec), spec, coef))

    if len(samples) < len(coefs):
        logger.debug("Mismatch sampling kept %d of %d directions (seed=%d)",
                     len(samples), len(coefs), seed)
    return samples


def solve_color_solid(
    csys: ColorSystem,
    basis: Basis,
    seed: int,
    n_samples: int,
    context: Optional[SolverContext] = None,
) -> List[MismatchSample]:
    """Boundary samples of the object color solid of ``csys``."""
    return solve_mismatch_solid([csys], [], basis, seed, n_samples, context)
