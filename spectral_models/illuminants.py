# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: illuminants.py - Analytic illuminant spectral power distributions.

All distributions are relative; color systems normalize by the luminance of
the illuminant, so absolute scale is irrelevant.
"""

import numpy as np
from numba import njit
from typing import Optional, Sequence

from uplift_spectra import wavelengths

__all__ = ["cie_e", "blackbody", "cie_a", "led_rgb"]

# Second radiation constant (m·K) and first radiation constant for spectral
# radiance (W·m²/sr)
C2: float = 1.4387769e-2
C1L: float = 1.191042972e-16


def _grid(wavelength: Optional[np.ndarray]) -> np.ndarray:
    if wavelength is None:
        wavelength = wavelengths()
    wl = np.ascontiguousarray(wavelength, dtype=np.float64)
    if wl.ndim != 1:
        raise ValueError(f"wavelength must be 1D, got shape {wl.shape}")
    return wl


@njit(cache=True, fastmath=True)
def _planck(wavelength_nm: np.ndarray, temperature: float) -> np.ndarray:
    out = np.empty_like(wavelength_nm)
    for i in range(wavelength_nm.shape[0]):
        wl = wavelength_nm[i] * 1e-9
        out[i] = C1L / (wl ** 5 * (np.exp(C2 / (wl * temperature)) - 1.0))
    return out


def cie_e(wavelength: Optional[np.ndarray] = None) -> np.ndarray:
    """Equal-energy illuminant E."""
    return np.ones_like(_grid(wavelength))


def blackbody(temperature: float, wavelength: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Planckian radiator at ``temperature`` K, normalized to 1 at 560 nm.

    Raises:
        ValueError: If temperature is not positive.
    """
    if temperature <= 0:
        raise ValueError(f"temperature must be > 0 K, got {temperature}")
    wl = _grid(wavelength)
    spd = _planck(wl, float(temperature))
    ref = _planck(np.array([560.0]), float(temperature))[0]
    return spd / ref


def cie_a(wavelength: Optional[np.ndarray] = None) -> np.ndarray:
    """CIE standard illuminant A (incandescent, 2856 K)."""
    return blackbody(2856.0, wavelength)


def led_rgb(
    peaks: Sequence[float] = (455.0, 530.0, 625.0),
    widths: Sequence[float] = (20.0, 30.0, 25.0),
    weights: Sequence[float] = (1.0, 0.8, 0.9),
    wavelength: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Narrow-band three-emitter source, a sum of Gaussian peaks.

    Such spiky sources provoke large metamer mismatch against broadband
    illuminants, which makes them useful as secondary color systems.
    """
    if not (len(peaks) == len(widths) == len(weights)):
        raise ValueError("peaks, widths and weights must have equal length")
    wl = _grid(wavelength)
    spd = np.zeros_like(wl)
    for mu, sigma, w in zip(peaks, widths, weights):
        if sigma <= 0:
            raise ValueError(f"LED width must be > 0, got {sigma}")
        spd += w * np.exp(-0.5 * ((wl - mu) / sigma) ** 2)
    return spd
