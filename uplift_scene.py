# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_scene.py - Scene resources and color system lookup.

The scene holds the spectral resources (bases, observers, illuminants) and
the upliftings defined over them. Resources sit in ``ResourceSlot``s that
record whether they were written since the last ``end_update()``; the
tesselation builders read those flags to decide what to rebuild.

Indices are trusted: asking for a slot that does not exist raises a plain
``IndexError``.
"""

from __future__ import annotations

import itertools
import logging
import threading
import warnings
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, Sequence, Tuple, TypeVar

import numpy as np

from uplift_config import WAVELENGTH_SAMPLES
from uplift_spectra import Basis, ColorSystem, IndirectColorSystem, Spectrum

__all__ = ["ResourceSlot", "SurfaceQuery", "Scene"]

logger = logging.getLogger("uplift.scene")

T = TypeVar("T")


class SurfaceQuery(Protocol):
    """Path-tracing backend answering surface queries for interreflection constraints."""

    def query_paths(self, surface: Any, spp: int) -> Sequence[Any]:
        """Light paths (``uplift_powerseries.PathRecord``) reaching ``surface``."""
        ...


class ResourceSlot(Generic[T]):
    """
    Thread-safe holder of one scene resource.

    Identity
    --------
    Every slot gets a process-unique, monotonically increasing ``uid``.

    Write path
    ----------
    All writes go through ``set`` which runs the slot's validator and
    raises the mutation flag; ``clear_mutated`` lowers it.
    """

    __slots__ = ("uid", "name", "_value", "_mutated", "_validator", "_lock")

    _uid_gen: itertools.count = itertools.count()

    def __init__(self, name: str, value: T, validator: Callable[[Any], T]) -> None:
        self.uid: int = next(ResourceSlot._uid_gen)
        self.name = name
        self._validator = validator
        self._value: T = validator(value)
        self._mutated = True
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        return self._value

    @property
    def is_mutated(self) -> bool:
        return self._mutated

    def set(self, value: Any) -> None:
        checked = self._validator(value)
        with self._lock:
            self._value = checked
            self._mutated = True

    def clear_mutated(self) -> None:
        with self._lock:
            self._mutated = False

    def __repr__(self) -> str:
        return f"ResourceSlot(uid={self.uid}, name={self.name!r}, mutated={self._mutated})"


# -- validators ---------------------------------------------------------------
def _check_basis(value: Any) -> Basis:
    basis = value if isinstance(value, Basis) else Basis(value)
    if basis.func.shape[0] != WAVELENGTH_SAMPLES:
        raise ValueError(f"Basis must have {WAVELENGTH_SAMPLES} rows, got {basis.func.shape[0]}")
    return basis


def _check_observer(value: Any) -> np.ndarray:
    cmfs = np.array(value, dtype=np.float64)
    if cmfs.shape != (WAVELENGTH_SAMPLES, 3):
        raise ValueError(f"Observer must have shape ({WAVELENGTH_SAMPLES}, 3), got {cmfs.shape}")
    if np.any(cmfs < 0.0):
        warnings.warn("Observer has negative color matching values", RuntimeWarning, stacklevel=3)
    cmfs.setflags(write=False)
    return cmfs


def _check_illuminant(value: Any) -> np.ndarray:
    spd = np.array(value, dtype=np.float64)
    if spd.shape != (WAVELENGTH_SAMPLES,):
        raise ValueError(f"Illuminant must have shape ({WAVELENGTH_SAMPLES},), got {spd.shape}")
    if not np.any(spd > 0.0):
        warnings.warn("Illuminant has no positive power; its color system is degenerate",
                      RuntimeWarning, stacklevel=3)
    spd.setflags(write=False)
    return spd


class Scene:
    """
    Spectral resources plus the upliftings using them.

    Upliftings are ``uplift_uplifting.Uplifting`` objects, edited in place
    by the application between ``UpliftEngine.update`` calls.
    """

    def __init__(self) -> None:
        self.bases:       List[ResourceSlot[Basis]] = []
        self.observers:   List[ResourceSlot[np.ndarray]] = []
        self.illuminants: List[ResourceSlot[np.ndarray]] = []
        self.upliftings:  List[Any] = []
        self.surface_query: Optional[SurfaceQuery] = None
        self._csys_cache: Dict[Tuple[int, int, int, int], ColorSystem] = {}
        self._lock = threading.RLock()

    # -- construction ------------------------------------------------------
    @classmethod
    def default(cls) -> "Scene":
        """
        Scene with a cosine basis, the CIE 1931 observer and a shifted
        variant, and illuminants E, A and a three-band LED.
        """
        from spectral_models.bases import cosine_basis
        from spectral_models.illuminants import cie_a, cie_e, led_rgb
        from spectral_models.observers import cie_1931, shifted_observer

        scene = cls()
        scene.add_basis(cosine_basis(), "cosine")
        scene.add_observer(cie_1931(), "CIE 1931 2°")
        scene.add_observer(shifted_observer(12.0), "CIE 1931 2° (+12 nm)")
        scene.add_illuminant(cie_e(), "E")
        scene.add_illuminant(cie_a(), "A")
        scene.add_illuminant(led_rgb(), "LED RGB")
        return scene

    def add_basis(self, value: Any, name: str = "basis") -> int:
        with self._lock:
            self.bases.append(ResourceSlot(name, value, _check_basis))
            return len(self.bases) - 1

    def add_observer(self, value: Any, name: str = "observer") -> int:
        with self._lock:
            self.observers.append(ResourceSlot(name, value, _check_observer))
            return len(self.observers) - 1

    def add_illuminant(self, value: Any, name: str = "illuminant") -> int:
        with self._lock:
            self.illuminants.append(ResourceSlot(name, value, _check_illuminant))
            return len(self.illuminants) - 1

    def add_uplifting(self, uplifting: Any) -> int:
        with self._lock:
            self.upliftings.append(uplifting)
            return len(self.upliftings) - 1

    # -- edits -------------------------------------------------------------
    def set_basis(self, i: int, value: Any) -> None:
        self.bases[i].set(value)

    def set_observer(self, i: int, value: Any) -> None:
        self.observers[i].set(value)

    def set_illuminant(self, i: int, value: Any) -> None:
        self.illuminants[i].set(value)

    # -- lookups -----------------------------------------------------------
    def get_basis(self, i: int) -> Basis:
        return self.bases[i].value

    def get_observer(self, i: int) -> np.ndarray:
        return self.observers[i].value

    def get_illuminant(self, i: int) -> np.ndarray:
        return self.illuminants[i].value

    def is_basis_mutated(self, i: int) -> bool:
        return self.bases[i].is_mutated

    def is_observer_mutated(self, i: int) -> bool:
        return self.observers[i].is_mutated

    def is_illuminant_mutated(self, i: int) -> bool:
        return self.illuminants[i].is_mutated

    def end_update(self) -> None:
        """Lowers all mutation flags; called once per engine tick."""
        for slot in itertools.chain(self.bases, self.observers, self.illuminants):
            slot.clear_mutated()

    # -- color systems -----------------------------------------------------
    def csys_of(self, observer_i: int, illuminant_i: int) -> ColorSystem:
        """Color system of an (observer, illuminant) pair, cached per resource version."""
        obs, illm = self.observers[observer_i], self.illuminants[illuminant_i]
        key = (observer_i, illuminant_i, id(obs.value), id(illm.value))
        with self._lock:
            csys = self._csys_cache.get(key)
            if csys is None:
                csys = ColorSystem(obs.value, illm.value)
                stale = [k for k in self._csys_cache if k[:2] == key[:2]]
                for k in stale:
                    del self._csys_cache[k]
                self._csys_cache[key] = csys
            return csys

    def csys(self, uplifting: Any) -> ColorSystem:
        """The primary color system of an uplifting."""
        return self.csys_of(uplifting.observer_i, uplifting.illuminant_i)

    def indirect_csys(self, observer_i: int, powers: Sequence[Spectrum]) -> IndirectColorSystem:
        return IndirectColorSystem(self.observers[observer_i].value, tuple(powers))
