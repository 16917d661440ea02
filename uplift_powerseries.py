# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_powerseries.py - Power series of interreflected light.

A path tracer answering a ``SurfaceQuery`` returns light paths that hit the
constrained surface zero or more times. Along each hit the surface
reflectance is an affine function of the uplifted reflectance,
``r_i = a_i·r + w_i``, so the radiance of a path expands into a polynomial
in ``r``. This module splits every path into its ``2**n`` monomials, bins
the monomial energies by their power and returns one spectrum per power:
the ``powers`` of an ``IndirectColorSystem``.

Each path carries four wavelength samples (hero wavelength sampling).
"""

from __future__ import annotations

import logging
from typing import Iterable, List, NamedTuple, Sequence, Tuple

import numpy as np

from uplift_config import WAVELENGTH_MAX, WAVELENGTH_MIN, WAVELENGTH_SAMPLES
from uplift_spectra import Spectrum

__all__ = [
    "PathVertex",
    "PathRecord",
    "PowerSeriesSample",
    "expand_path",
    "build_power_series",
]

logger = logging.getLogger("uplift.powerseries")

# Divisors below this are skipped when dividing the reflectance out of a path
_MIN_DIVISOR: float = 1e-4
# Power bins whose every value is at or below this are zeroed
_MIN_POWER: float = 1e-3


class PathVertex(NamedTuple):
    """Surface hit on the constrained object: r_i = a·r + remainder (per wavelength)."""
    a:         np.ndarray
    remainder: np.ndarray


class PathRecord(NamedTuple):
    """One traced light path."""
    wvls:     np.ndarray            # (4,) wavelengths in nm
    L:        np.ndarray            # (4,) path radiance
    vertices: Sequence[PathVertex]  # hits on the constrained surface


class PowerSeriesSample(NamedTuple):
    power:  int
    wvls:   np.ndarray
    values: np.ndarray


def expand_path(path: PathRecord, spec: Spectrum) -> List[PowerSeriesSample]:
    """
    Splits a path into one monomial per subset of its constrained hits.

    The path radiance was rendered with the current reflectance ``spec``;
    that reflectance is divided out first, then every subset of hits takes
    the ``a`` factor (one power of ``r``) and the rest their remainder.
    """
    wvls = np.asarray(path.wvls, dtype=np.float64)
    back = np.array(path.L, dtype=np.float64)
    refl = _sample_spectrum(spec, wvls)
    for vt in path.vertices:
        rdiv = refl * vt.a + vt.remainder
        back = np.where(rdiv > _MIN_DIVISOR, back / np.where(rdiv > _MIN_DIVISOR, rdiv, 1.0), back)

    n = len(path.vertices)
    out = []
    for mask in range(2 ** n):
        values = back.copy()
        power = 0
        for j, vt in enumerate(path.vertices):
            if mask >> j & 1:
                power += 1
                values *= vt.a
            else:
                values *= vt.remainder
        out.append(PowerSeriesSample(power, wvls, values))
    return out


def _wavelength_bins(wvls: np.ndarray) -> np.ndarray:
    t = (wvls - WAVELENGTH_MIN) / (WAVELENGTH_MAX - WAVELENGTH_MIN)
    return np.clip((t * WAVELENGTH_SAMPLES).astype(np.int64), 0, WAVELENGTH_SAMPLES - 1)


def _sample_spectrum(spec: Spectrum, wvls: np.ndarray) -> np.ndarray:
    return np.asarray(spec, dtype=np.float64)[_wavelength_bins(wvls)]


def build_power_series(samples: Iterable[PowerSeriesSample], spp: int) -> Tuple[Spectrum, ...]:
    """
    Reduces monomial samples into per-power spectra.

    Args:
        samples: Output of ``expand_path`` over all traced paths.
        spp: Number of paths traced per query.

    Returns:
        ``1 + max(power)`` spectra; empty if there were no samples.
    """
    if spp <= 0:
        raise ValueError(f"spp must be positive, got {spp}")
    samples = list(samples)
    if not samples:
        return ()

    powers = np.zeros((1 + max(s.power for s in samples), WAVELENGTH_SAMPLES))
    for s in samples:
        np.add.at(powers[s.power], _wavelength_bins(np.asarray(s.wvls)), s.values)

    powers *= 0.25 * WAVELENGTH_SAMPLES / spp
    np.maximum(powers, 0.0, out=powers)
    powers[np.all(powers <= _MIN_POWER, axis=1)] = 0.0
    logger.debug("Power series from %d samples: %d orders", len(samples), powers.shape[0])
    return tuple(powers)
