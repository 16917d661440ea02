# -*- coding: utf-8 -*-
import logging
import threading

import pytest

from __about__ import __title__, metadata_summary
from logging_config import setup_logging
from uplift_config import UpliftSettings, configure, get_settings, reset_settings
from uplift_context import SolverContext, run_map


def test_configure_and_reset():
    settings = configure(mismatch_samples_max=64, hull_min_extent=1e-3)
    assert get_settings() is settings
    assert settings.mismatch_samples_max == 64
    assert settings.mismatch_samples_iter == UpliftSettings().mismatch_samples_iter
    assert reset_settings() == UpliftSettings()


@pytest.mark.parametrize("kwargs", [
    {"no_such_knob": 1},
    {"boundary_samples": 0},
    {"hull_min_points": 3},
    {"constraint_tol": -1.0},
    {"hull_min_extent": 0.0},
    {"hull_min_extent": 5e-5},
    {"max_workers": 0},
])
def test_configure_rejects_bad_values(kwargs):
    before = get_settings()
    with pytest.raises(ValueError):
        configure(**kwargs)
    assert get_settings() is before


def test_setup_logging(tmp_path):
    log_file = tmp_path / "uplift.log"
    logger = setup_logging(logging.DEBUG, str(log_file))
    setup_logging(logging.DEBUG, str(log_file))
    assert logger.name == "uplift"
    assert len(logger.handlers) == 2
    logging.getLogger("uplift.test").debug("child message")
    for handler in logger.handlers:
        handler.flush()
    assert "child message" in log_file.read_text(encoding="utf-8")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_context_keeps_order():
    with SolverContext(max_workers=3) as ctx:
        names = set()

        def work(x):
            names.add(threading.current_thread().name)
            return x * x

        assert ctx.map(work, range(50)) == [x * x for x in range(50)]
        assert all(n.startswith("uplift") for n in names)
    assert ctx.closed
    with pytest.raises(RuntimeError):
        ctx.map(abs, [-1, -2])


def test_run_map_without_context():
    assert run_map(None, abs, [-1, 2, -3]) == [1, 2, 3]


def test_context_rejects_bad_worker_count():
    with pytest.raises(ValueError):
        SolverContext(max_workers=0)


def test_metadata():
    assert metadata_summary()["title"] == __title__ == "Uplift"
