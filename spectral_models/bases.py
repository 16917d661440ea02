# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: bases.py - Low-dimensional reflectance bases.

Both constructors return plain (n_wavelengths, n_bases) matrices; wrap them
in ``uplift_spectra.Basis`` to use them for solving. Bases are scaled so
that the full reflectance range is reachable with coefficients in [-1, 1].
"""

import numpy as np
from typing import Optional

from uplift_config import WAVELENGTH_BASES, WAVELENGTH_SAMPLES

__all__ = ["cosine_basis", "pca_basis"]


def cosine_basis(n_bases: Optional[int] = None, n_samples: Optional[int] = None) -> np.ndarray:
    """
    Smooth Fourier-cosine basis over the normalized wavelength axis.

    Column 0 is constant 1; column k is 0.5·cos(kπt) for t in [0, 1].
    """
    n_bases = WAVELENGTH_BASES if n_bases is None else int(n_bases)
    n_samples = WAVELENGTH_SAMPLES if n_samples is None else int(n_samples)
    if n_bases < 1 or n_samples < 2:
        raise ValueError(f"Invalid basis size ({n_samples}, {n_bases})")

    t = np.linspace(0.0, 1.0, n_samples)
    k = np.arange(n_bases, dtype=np.float64)
    func = 0.5 * np.cos(np.pi * t[:, None] * k[None, :])
    func[:, 0] = 1.0
    return func


def pca_basis(spectra: np.ndarray, n_bases: Optional[int] = None) -> np.ndarray:
    """
    Principal components of a set of measured reflectances.

    The decomposition is uncentered so the first component tracks the mean
    spectrum. Components are sign-fixed to a positive sum and scaled to unit
    peak magnitude.

    Args:
        spectra: (N, n_wavelengths) reflectances with N >= n_bases.
        n_bases: Number of components to keep.
    """
    n_bases = WAVELENGTH_BASES if n_bases is None else int(n_bases)
    spectra = np.asarray(spectra, dtype=np.float64)
    if spectra.ndim != 2:
        raise ValueError(f"spectra must be 2D (N, n_wavelengths), got {spectra.shape}")
    if spectra.shape[0] < n_bases:
        raise ValueError(f"Need at least {n_bases} spectra, got {spectra.shape[0]}")

    _, _, vt = np.linalg.svd(spectra, full_matrices=False)
    func = vt[:n_bases].T.copy()
    signs = np.where(func.sum(axis=0) < 0.0, -1.0, 1.0)
    func *= signs
    func /= np.max(np.abs(func), axis=0)
    return func
