import pytest
import pandas as pd
import numpy as np
from utils.exceptions import DomainError
from utils.preprocessor import (
    Preprocessor,
    box_cox,
    boxcox_loglik,
    difference,
    difference_with_boundary,
    integrate,
    inverse_box_cox,
    lambda_grid,
    select_boxcox_lambda,
)
from utils.synthetic import simulate_monthly_counts


# --- Test Helpers & Fixtures ---

def _monthly_series(values, start: str = "1970-01-01", name: str = "count") -> pd.Series:
    """Helper to wrap values in a month-start indexed series."""
    index = pd.date_range(start=start, periods=len(values), freq="MS")
    return pd.Series(np.asarray(values, dtype=float), index=index, name=name)


@pytest.fixture
def count_series():
    """Positive seasonal count series of 20 years."""
    df = simulate_monthly_counts(n=240, level=300.0, lam=0.5, seed=7, ar=[0.3], seasonal_ma=[-0.9])
    return _monthly_series(df["count"].to_numpy())


@pytest.fixture
def base_config():
    return {
        "power_transform": {"enabled": True, "lambda": None, "lambda_grid": {"min": 0.36, "max": 0.65, "step": 0.01}},
        "differencing": {"enabled": True, "order": 1, "seasonal_order": 1, "seasonal_period": 12},
    }


# --- Power transform ---

@pytest.mark.parametrize("lam", [0.0, 0.5, 0.37, 1.0, -0.5, 2.0])
def test_box_cox_roundtrip(lam):
    """Transform-then-inverse recovers the input within floating-point tolerance."""
    y = np.array([0.5, 1.0, 3.0, 10.0, 250.0, 1234.5])
    np.testing.assert_allclose(inverse_box_cox(box_cox(y, lam), lam), y, rtol=1e-10)


def test_box_cox_matches_closed_form():
    y = np.array([1.0, 4.0, 9.0])
    np.testing.assert_allclose(box_cox(y, 0.5), (np.sqrt(y) - 1.0) / 0.5)
    np.testing.assert_allclose(box_cox(y, 0.0), np.log(y))


def test_box_cox_preserves_series_index():
    s = _monthly_series([1.0, 2.0, 3.0])
    out = box_cox(s, 0.5)
    assert isinstance(out, pd.Series)
    assert out.index.equals(s.index)
    assert out.name == "count"


@pytest.mark.parametrize("values", [[1.0, 0.0, 2.0], [3.0, -1.0], [1.0, np.nan], []])
def test_box_cox_rejects_values_outside_domain(values):
    """Non-positive, NaN or empty input raises DomainError instead of being coerced."""
    with pytest.raises(DomainError):
        box_cox(np.array(values, dtype=float), 0.5)


def test_domain_error_is_value_error():
    with pytest.raises(ValueError):
        box_cox(np.array([0.0]), 0.0)


def test_inverse_box_cox_rejects_invalid_base():
    with pytest.raises(DomainError):
        inverse_box_cox(np.array([-3.0]), 0.5)


# --- Differencing ---

@pytest.mark.parametrize("order, lag", [(1, 1), (2, 1), (1, 12), (2, 12), (0, 1)])
def test_difference_length_and_reintegration(order, lag):
    """Output is exactly order * lag shorter and re-integrates to the input."""
    rng = np.random.default_rng(0)
    y = rng.normal(size=100).cumsum() + 50.0
    diffed, boundaries = difference_with_boundary(y, order=order, lag=lag)
    assert len(diffed) == len(y) - order * lag
    np.testing.assert_allclose(integrate(diffed, boundaries, lag=lag), y, atol=1e-9)


def test_difference_series_keeps_tail_index():
    s = _monthly_series(np.arange(1.0, 31.0) ** 2)
    diffed = difference(s, order=1, lag=12)
    assert len(diffed) == 18
    assert diffed.index[0] == s.index[12]
    np.testing.assert_allclose(diffed.iloc[0], s.iloc[12] - s.iloc[0])


def test_integrate_series_restores_index():
    s = _monthly_series(np.linspace(1.0, 40.0, 40))
    diffed, boundaries = difference_with_boundary(s, order=1, lag=12)
    restored = integrate(diffed, boundaries, lag=12)
    assert restored.index.equals(s.index)
    np.testing.assert_allclose(restored.to_numpy(), s.to_numpy())


def test_difference_rejects_short_series():
    with pytest.raises(ValueError, match="too short"):
        difference(np.arange(12.0), order=1, lag=12)


def test_integrate_rejects_wrong_boundary_length():
    with pytest.raises(ValueError, match="exactly 12 values"):
        integrate(np.zeros(5), [np.zeros(3)], lag=12)


# --- Box-Cox parameter selection ---

def test_lambda_grid_default():
    grid = lambda_grid()
    assert len(grid) == 30
    assert grid[0] == pytest.approx(0.36)
    assert grid[-1] == pytest.approx(0.65)


def test_boxcox_loglik_is_finite(count_series):
    assert np.isfinite(boxcox_loglik(count_series, 0.5, ar_order=13))


def test_select_boxcox_lambda_returns_grid_maximizer(count_series):
    selection = select_boxcox_lambda(count_series, ar_order=13)
    table = selection.loglik
    assert list(table.columns) == ["lambda", "loglik"]
    assert len(table) == 30
    assert selection.lam == pytest.approx(table.loc[table["loglik"].idxmax(), "lambda"])
    assert selection.ci[0] <= selection.lam <= selection.ci[1]
    assert selection.ar_order == 13


def test_select_boxcox_lambda_chooses_ar_order(count_series):
    selection = select_boxcox_lambda(count_series, lambdas=[0.4, 0.5, 0.6])
    assert selection.ar_order >= 1
    assert selection.lam in (0.4, 0.5, 0.6)


def test_select_boxcox_lambda_rejects_non_positive():
    y = _monthly_series([5.0, 0.0] * 30)
    with pytest.raises(DomainError):
        select_boxcox_lambda(y, ar_order=2)


# --- Preprocessor ---

def test_preprocessor_initialization_and_defaults():
    preprocessor = Preprocessor({})
    assert preprocessor.power_enabled is True
    assert preprocessor.d == 1
    assert preprocessor.D == 1
    assert preprocessor.seasonal_period == 12
    assert preprocessor.total_lag == 13


def test_preprocessor_fixed_lambda_roundtrip(count_series, base_config):
    """The full forward pipeline shortens the series by d + D*s and inverts exactly."""
    base_config["power_transform"]["lambda"] = 0.5
    preprocessor = Preprocessor(base_config)
    diffed = preprocessor.apply_transforms(count_series)

    assert preprocessor.selection is None
    assert len(diffed) == len(count_series) - 13
    reconstructed = preprocessor.inverse_transforms(diffed)
    np.testing.assert_allclose(reconstructed.to_numpy(), count_series.to_numpy(), rtol=1e-8)
    assert reconstructed.index.equals(count_series.index)


def test_preprocessor_selects_lambda(count_series, base_config):
    base_config["power_transform"]["ar_order"] = 13
    preprocessor = Preprocessor(base_config)
    preprocessor.apply_transforms(count_series)
    assert preprocessor.selection is not None
    assert 0.36 <= preprocessor.lam <= 0.65


def test_preprocessor_without_power_transform(count_series, base_config):
    base_config["power_transform"]["enabled"] = False
    preprocessor = Preprocessor(base_config)
    diffed = preprocessor.apply_transforms(count_series)
    expected = difference(difference(count_series, 1, 12), 1, 1)
    np.testing.assert_allclose(diffed.to_numpy(), expected.to_numpy())


def test_preprocessor_rejects_zero_counts(base_config):
    base_config["power_transform"]["lambda"] = 0.5
    preprocessor = Preprocessor(base_config)
    series = _monthly_series([10.0] * 30 + [0.0] + [10.0] * 29)
    with pytest.raises(DomainError):
        preprocessor.apply_transforms(series)


def test_preprocessor_rejects_series_shorter_than_differencing(base_config):
    base_config["power_transform"]["lambda"] = 0.5
    preprocessor = Preprocessor(base_config)
    with pytest.raises(ValueError):
        preprocessor.apply_transforms(_monthly_series(np.arange(1.0, 11.0)))


def test_inverse_before_fit_raises():
    with pytest.raises(RuntimeError, match="not been fitted"):
        Preprocessor({}).inverse_transforms(_monthly_series([1.0, 2.0]))


def test_invalid_config_raises():
    with pytest.raises(ValueError, match="Configuration validation failed"):
        Preprocessor({"differencing": {"order": -1}})
