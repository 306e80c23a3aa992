import pytest
import logging
import pandas as pd
from models.sarima import OutlierTerm
from utils.logging_utils import (
    log_fit_failure,
    log_outliers,
    log_search_start,
    log_search_summary,
    log_selected_model,
)

LABEL = "SARIMA(1,1,0)x(0,1,1)_12"

# --- Tests for `log_search_start` ---

def test_log_search_start(caplog):
    """Tests that the function logs the grid size and differencing orders."""
    with caplog.at_level(logging.INFO):
        log_search_start(256, 1, 1, 12)
    assert "[search] Fitting 256 candidates with d=1, D=1, s=12 sequentially" in caplog.text

def test_log_search_start_parallel(caplog):
    with caplog.at_level(logging.INFO):
        log_search_start(16, 1, 1, 12, n_jobs=4)
    assert "with n_jobs=4" in caplog.text

@pytest.mark.parametrize("grid_size", [0, -3, 2.5])
def test_log_search_start_invalid_grid_size_fails(grid_size):
    with pytest.raises(ValueError, match="grid_size must be a positive integer."):
        log_search_start(grid_size, 1, 1, 12)

# --- Tests for `log_fit_failure` ---

def test_log_fit_failure(caplog):
    """Tests that the function logs a failed candidate at WARNING."""
    with caplog.at_level(logging.WARNING):
        log_fit_failure(LABEL, {'p': 1}, "convergence", "optimizer did not converge")
    assert f"[search] {LABEL} failed (convergence) with params={{'p': 1}}: optimizer did not converge" in caplog.text
    assert caplog.records[-1].levelno == logging.WARNING

@pytest.mark.parametrize("args, error_msg", [
    (("", {'p': 1}, "error", "boom"), "label cannot be empty."),
    ((LABEL, "not_a_dict", "error", "boom"), "params must be a dictionary."),
])
def test_log_fit_failure_invalid_inputs_fail(args, error_msg):
    with pytest.raises(ValueError, match=error_msg):
        log_fit_failure(*args)

# --- Tests for `log_search_summary` ---

def test_log_search_summary(caplog):
    with caplog.at_level(logging.INFO):
        log_search_summary(256, 250, 6, LABEL, 1234.5678)
    assert "[search] 250/256 candidates fitted, 6 failed" in caplog.text
    assert f"[search] Lowest AIC: {LABEL} with AIC=1234.568" in caplog.text

def test_log_search_summary_all_failed(caplog):
    with caplog.at_level(logging.WARNING):
        log_search_summary(4, 0, 4)
    assert "Every candidate failed to fit" in caplog.text

@pytest.mark.parametrize("args, error_msg", [
    ((4, -1, 0), "Counts must be non-negative."),
    ((4, 3, 2), "cannot exceed grid_size"),
])
def test_log_search_summary_invalid_inputs_fail(args, error_msg):
    with pytest.raises(ValueError, match=error_msg):
        log_search_summary(*args)

# --- Tests for `log_selected_model` ---

def test_log_selected_model(caplog):
    with caplog.at_level(logging.INFO):
        log_selected_model(LABEL, "suggest", 100.0)
    assert f"[model] Selected {LABEL} (from suggest, search AIC=100.000)" in caplog.text

@pytest.mark.parametrize("args, error_msg", [
    (("", "config"), "label cannot be empty."),
    ((LABEL, ""), "source cannot be empty."),
])
def test_log_selected_model_invalid_inputs_fail(args, error_msg):
    with pytest.raises(ValueError, match=error_msg):
        log_selected_model(*args)

# --- Tests for `log_outliers` ---

def test_log_outliers(caplog):
    outliers = [OutlierTerm(position=40, timestamp=pd.Timestamp("2003-05-01"), statistic=4.567)]
    with caplog.at_level(logging.INFO):
        log_outliers(LABEL, outliers)
    assert "1 innovative outlier(s) at 2003-05 (stat=4.57)" in caplog.text

def test_log_outliers_none(caplog):
    with caplog.at_level(logging.INFO):
        log_outliers(LABEL, [])
    assert "no innovative outliers" in caplog.text

def test_log_outliers_invalid_input_fails():
    with pytest.raises(ValueError, match="outliers must be a list."):
        log_outliers(LABEL, None)
