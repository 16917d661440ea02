# -*- coding: utf-8 -*-
"""Shared fixtures for the Uplift test suite."""

import numpy as np
import pytest

from uplift_config import reset_settings
from uplift_scene import Scene

# Resource indices of Scene.default()
OBS_CIE, OBS_SHIFTED = 0, 1
ILLM_E, ILLM_A, ILLM_LED = 0, 1, 2


@pytest.fixture(autouse=True)
def _default_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(scope="session")
def session_scene():
    return Scene.default()


@pytest.fixture
def scene():
    return Scene.default()


@pytest.fixture
def basis(session_scene):
    return session_scene.get_basis(0)


@pytest.fixture
def csys(session_scene):
    return session_scene.csys_of(OBS_CIE, ILLM_E)


@pytest.fixture
def csys_led(session_scene):
    return session_scene.csys_of(OBS_CIE, ILLM_LED)


@pytest.fixture
def smooth_coef(basis):
    """Coefficients of a smooth reflectance well inside [0, 1]."""
    coef = np.zeros(basis.n_bases)
    coef[:4] = [0.45, 0.12, -0.08, 0.05]
    return coef
