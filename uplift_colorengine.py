# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Color Engine (working space)
============================
The uplifting pipeline works in linear sRGB throughout: color systems map
spectra to linear sRGB, mismatch volumes are built in linear sRGB and
tesselations are queried with linear sRGB colors. This module holds the
IEC 61966-2-1 primaries for that space and its luminance.

References:
    - CIE 15:2004 "Colorimetry"
    - IEC 61966-2-1:1999 (sRGB Standard)
"""

import numpy as np
from typing import Final, TypeAlias

__all__ = [
    "ArrayFloat",
    "M_XYZ_TO_SRGB_T",
    "LUMINANCE_WEIGHTS",
    "luminance",
]

ArrayFloat: TypeAlias = np.typing.NDArray[np.floating]

# Stored transposed so that a batch of row vectors converts as ``xyz @ M_T``.
M_XYZ_TO_SRGB_T: Final[ArrayFloat] = np.array([
    [ 3.2404542, -1.5371385, -0.4985314],
    [-0.9692660,  1.8760108,  0.0415560],
    [ 0.0556434, -0.2040259,  1.0572252]
], dtype=np.float64).T.copy()

# Y row of the linear sRGB -> XYZ matrix
LUMINANCE_WEIGHTS: Final[ArrayFloat] = np.array(
    [0.2126729, 0.7151522, 0.0721750], dtype=np.float64)


def luminance(lrgb: ArrayFloat) -> ArrayFloat:
    """Relative luminance Y of linear sRGB colors; (3,) -> scalar, (N, 3) -> (N,)."""
    lrgb = np.asarray(lrgb, dtype=np.float64)
    if lrgb.shape[-1] != 3:
        raise ValueError(f"Expected last dimension size 3, got {lrgb.shape[-1]}")
    return lrgb @ LUMINANCE_WEIGHTS
