# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: observers.py - Analytic color matching functions.

The CIE 1931 2° standard observer is represented by the multi-lobe
piecewise-Gaussian fit of Wyman, Sloan & Shirley (2013), which stays within
the tabulated data to a few percent and needs no data files. A ``shift``
moves every lobe along the wavelength axis, yielding a family of plausible
alternative observers for observer-metamerism experiments.

References:
    - Wyman, C., Sloan, P.-P., Shirley, P. (2013). "Simple Analytic
      Approximations to the CIE XYZ Color Matching Functions". JCGT 2(2).
"""

import numpy as np
from numba import njit
from typing import Optional

from uplift_spectra import wavelengths

__all__ = ["cie_1931", "shifted_observer"]

# Lobes as (weight, mean, sigma below mean, sigma above mean)
_X_LOBES = np.array([
    [ 1.056, 599.8, 37.9, 31.0],
    [ 0.362, 442.0, 16.0, 26.7],
    [-0.065, 501.1, 20.4, 26.2],
], dtype=np.float64)

_Y_LOBES = np.array([
    [ 0.821, 568.8, 46.9, 40.5],
    [ 0.286, 530.9, 16.3, 31.1],
], dtype=np.float64)

_Z_LOBES = np.array([
    [ 1.217, 437.0, 11.8, 36.0],
    [ 0.681, 459.0, 26.0, 13.8],
], dtype=np.float64)


@njit(cache=True, fastmath=True)
def _piecewise_gaussian(wavelength: np.ndarray, lobes: np.ndarray, shift: float) -> np.ndarray:
    out = np.zeros(wavelength.shape[0], dtype=np.float64)
    for i in range(wavelength.shape[0]):
        wl = wavelength[i]
        acc = 0.0
        for j in range(lobes.shape[0]):
            mu = lobes[j, 1] + shift
            sigma = lobes[j, 2] if wl < mu else lobes[j, 3]
            t = (wl - mu) / sigma
            acc += lobes[j, 0] * np.exp(-0.5 * t * t)
        out[i] = acc
    return out


def cie_1931(wavelength: Optional[np.ndarray] = None) -> np.ndarray:
    """
    CIE 1931 2° color matching functions.

    Args:
        wavelength: Wavelengths in nm; defaults to the working grid.

    Returns:
        Array of shape (n_wavelengths, 3) holding x̄, ȳ, z̄ columns.
    """
    return shifted_observer(0.0, wavelength)


def shifted_observer(shift: float, wavelength: Optional[np.ndarray] = None) -> np.ndarray:
    """
    CIE 1931 fit with every lobe displaced by ``shift`` nm.

    Negative values are clamped to zero so the observer stays physical.
    """
    if wavelength is None:
        wavelength = wavelengths()
    wl = np.ascontiguousarray(wavelength, dtype=np.float64)
    if wl.ndim != 1:
        raise ValueError(f"wavelength must be 1D, got shape {wl.shape}")

    cmfs = np.stack([
        _piecewise_gaussian(wl, _X_LOBES, float(shift)),
        _piecewise_gaussian(wl, _Y_LOBES, float(shift)),
        _piecewise_gaussian(wl, _Z_LOBES, float(shift)),
    ], axis=1)
    return np.maximum(cmfs, 0.0)
