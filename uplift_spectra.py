# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_spectra.py - Spectral basis and color systems.

A spectrum is a float64 vector over the fixed working grid
(``WAVELENGTH_SAMPLES`` bins between ``WAVELENGTH_MIN`` and
``WAVELENGTH_MAX``). Reflectances are represented by a few coefficients in a
linear ``Basis``; ``ColorSystem`` maps spectra to linear sRGB under an
observer and illuminant, and ``IndirectColorSystem`` does the same for
interreflected light described by a power series over the reflectance.

Conventions
-----------
* Colors are linear sRGB, normalized so that a perfect white reflector
  has luminance Y = 1 under the color system's illuminant.
* ``finalize()`` returns the (n_wavelengths, 3) matrix ``M`` with
  ``color = spectrum @ M``; solvers consume ``M.T @ basis.func``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Sequence, Tuple, TypeAlias

import numpy as np

from uplift_colorengine import M_XYZ_TO_SRGB_T
from uplift_config import WAVELENGTH_MAX, WAVELENGTH_MIN, WAVELENGTH_SAMPLES

__all__ = [
    "Spectrum",
    "Color",
    "Coefficients",
    "wavelengths",
    "gray_spectrum",
    "Basis",
    "ColorSystem",
    "IndirectColorSystem",
    "stack_finalized",
]

Spectrum: TypeAlias = np.ndarray
Color: TypeAlias = np.ndarray
Coefficients: TypeAlias = np.ndarray

WAVELENGTH_STEP: Final[float] = (WAVELENGTH_MAX - WAVELENGTH_MIN) / WAVELENGTH_SAMPLES


def wavelengths() -> np.ndarray:
    """Bin centers of the working grid in nm."""
    return WAVELENGTH_MIN + WAVELENGTH_STEP * (np.arange(WAVELENGTH_SAMPLES) + 0.5)


def gray_spectrum(value: float) -> Spectrum:
    """Flat spectrum at ``value``."""
    return np.full(WAVELENGTH_SAMPLES, float(value), dtype=np.float64)


def _as_matrix(arr: np.ndarray, cols: int | None, label: str) -> np.ndarray:
    arr = np.ascontiguousarray(arr, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[0] != WAVELENGTH_SAMPLES \
            or (cols is not None and arr.shape[1] != cols):
        want = f"({WAVELENGTH_SAMPLES}, {cols if cols is not None else 'n'})"
        raise ValueError(f"{label}: expected shape {want}, got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{label}: contains non-finite values")
    arr.setflags(write=False)
    return arr


def _as_spectrum(arr: np.ndarray, label: str) -> Spectrum:
    arr = np.ascontiguousarray(arr, dtype=np.float64)
    if arr.shape != (WAVELENGTH_SAMPLES,):
        raise ValueError(f"{label}: expected shape ({WAVELENGTH_SAMPLES},), got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{label}: contains non-finite values")
    arr.setflags(write=False)
    return arr


# ---------------------------------------------------------------------------
# Basis
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True, eq=False)
class Basis:
    """
    Linear reflectance basis, ``spectrum = func @ coef``.

    ``func`` has shape (n_wavelengths, n_bases). Calling the basis with a
    single coefficient vector returns one spectrum; an (N, n_bases) batch
    returns (N, n_wavelengths).
    """
    func: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "func", _as_matrix(self.func, None, "Basis.func"))

    @property
    def n_bases(self) -> int:
        return self.func.shape[1]

    def __call__(self, coef: Coefficients) -> Spectrum:
        coef = np.asarray(coef, dtype=np.float64)
        if coef.shape[-1] != self.n_bases:
            raise ValueError(f"Expected {self.n_bases} coefficients, got {coef.shape[-1]}")
        return coef @ self.func.T

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Basis):
            return NotImplemented
        return self.func.shape == other.func.shape and np.array_equal(self.func, other.func)

    __hash__ = None  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Color systems
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True, eq=False)
class ColorSystem:
    """
    Observer color matching functions under an illuminant.

    Attributes:
        cmfs: (n_wavelengths, 3) CIE XYZ color matching functions.
        illuminant: (n_wavelengths,) relative spectral power distribution.
    """
    cmfs:       np.ndarray
    illuminant: np.ndarray
    _matrix:    np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        cmfs = _as_matrix(self.cmfs, 3, "ColorSystem.cmfs")
        illm = _as_spectrum(self.illuminant, "ColorSystem.illuminant")
        object.__setattr__(self, "cmfs", cmfs)
        object.__setattr__(self, "illuminant", illm)

        weighted = cmfs * illm[:, None]
        y_sum = float(weighted[:, 1].sum())
        k = 1.0 / y_sum if y_sum > 0.0 else 1.0
        matrix = (weighted * k) @ M_XYZ_TO_SRGB_T
        matrix.setflags(write=False)
        object.__setattr__(self, "_matrix", matrix)

    def finalize(self) -> np.ndarray:
        """(n_wavelengths, 3) linear map from reflectance to linear sRGB."""
        return self._matrix

    def __call__(self, spectrum: Spectrum) -> Color:
        return np.asarray(spectrum, dtype=np.float64) @ self._matrix

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColorSystem):
            return NotImplemented
        return np.array_equal(self.cmfs, other.cmfs) \
            and np.array_equal(self.illuminant, other.illuminant)

    __hash__ = None  # type: ignore[assignment]


@dataclass(slots=True, frozen=True, eq=False)
class IndirectColorSystem:
    """
    Color system for interreflected light.

    ``powers[j]`` is the spectral power arriving after paths that touched
    the uplifted surface ``j`` times, so a reflectance ``r`` produces the
    radiance ``Σ_j r**j · powers[j]``. The normalization matches a white
    reflector to luminance 1 over all orders together.
    """
    cmfs:    np.ndarray
    powers:  Tuple[np.ndarray, ...]
    _matrices: Tuple[np.ndarray, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        cmfs = _as_matrix(self.cmfs, 3, "IndirectColorSystem.cmfs")
        powers = tuple(_as_spectrum(p, f"IndirectColorSystem.powers[{j}]")
                       for j, p in enumerate(self.powers))
        object.__setattr__(self, "cmfs", cmfs)
        object.__setattr__(self, "powers", powers)

        total = np.sum(powers, axis=0) if powers else np.zeros(WAVELENGTH_SAMPLES)
        y_sum = float((cmfs[:, 1] * total).sum())
        k = 1.0 / y_sum if y_sum > 0.0 else 1.0
        matrices = []
        for p in powers:
            m = (cmfs * (p * k)[:, None]) @ M_XYZ_TO_SRGB_T
            m.setflags(write=False)
            matrices.append(m)
        object.__setattr__(self, "_matrices", tuple(matrices))

    def finalize(self) -> Tuple[np.ndarray, ...]:
        """One (n_wavelengths, 3) matrix per power of the reflectance."""
        return self._matrices

    def __call__(self, spectrum: Spectrum) -> Color:
        r = np.asarray(spectrum, dtype=np.float64)
        colr = np.zeros(r.shape[:-1] + (3,), dtype=np.float64)
        for j, m in enumerate(self._matrices):
            colr += (r ** j) @ m
        return colr

    def __len__(self) -> int:
        return len(self.powers)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndirectColorSystem):
            return NotImplemented
        return np.array_equal(self.cmfs, other.cmfs) \
            and len(self.powers) == len(other.powers) \
            and all(np.array_equal(a, b) for a, b in zip(self.powers, other.powers))

    __hash__ = None  # type: ignore[assignment]


def stack_finalized(systems: Sequence[ColorSystem]) -> np.ndarray:
    """Horizontal stack of finalized systems, (n_wavelengths, 3·len(systems))."""
    if not systems:
        return np.zeros((WAVELENGTH_SAMPLES, 0))
    return np.hstack([s.finalize() for s in systems])
