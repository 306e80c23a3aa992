import pytest
import warnings
import numpy as np
import pandas as pd
from unittest.mock import MagicMock
from models.base_arima import ARIMABaseModel, FitResult, SARIMASpec, compute_aic
from utils.exceptions import FitConvergenceFailure, NumericalInstability
from utils.synthetic import simulate_sarima


# --- Test Helpers & Fixtures ---

@pytest.fixture
def series():
    """ARIMA(1,1,0)x(0,1,0)_12 path with phi = 0.5."""
    return simulate_sarima(240, ar=[0.5], d=1, D=1, s=12, seed=11)


def _mock_results(params: pd.Series, cov: np.ndarray, converged: bool = True, llf: float = -100.0) -> MagicMock:
    """Helper to build a stand-in for a statsmodels results object."""
    res = MagicMock()
    res.params = params
    res.cov_params.return_value = pd.DataFrame(cov, index=params.index, columns=params.index)
    res.mle_retvals = {"converged": converged}
    res.llf = llf
    res.nobs = 47
    res.resid = pd.Series(np.zeros(47))
    res.arparams = params.filter(like="ar.L").to_numpy()
    return res


@pytest.fixture
def mock_sarimax(mocker):
    """Patch SARIMAX so that `fit` returns whatever the test assigns."""
    sarimax = mocker.patch("models.base_arima.SARIMAX")
    return sarimax


# --- SARIMASpec ---

def test_spec_label_and_orders():
    spec = SARIMASpec(p=1, q=2, P=0, Q=1)
    assert spec.label == "SARIMA(1,1,2)x(0,1,1)_12"
    assert spec.order == (1, 1, 2)
    assert spec.seasonal_order == (0, 1, 1, 12)
    assert spec.n_arma == 4


def test_spec_from_params():
    spec = SARIMASpec.from_params({"p": 2, "q": 0, "P": 1, "Q": 3}, d=1, D=0, s=4)
    assert spec == SARIMASpec(p=2, d=1, q=0, P=1, D=0, Q=3, s=4)


@pytest.mark.parametrize("kwargs", [{"p": -1}, {"q": 1.5}, {"P": True}, {"P": 1, "s": 1}])
def test_spec_rejects_invalid_orders(kwargs):
    with pytest.raises(ValueError):
        SARIMASpec(**kwargs)


# --- AIC ---

def test_compute_aic():
    assert compute_aic(-100.0, 3) == pytest.approx(206.0)
    with pytest.raises(ValueError):
        compute_aic(-100.0, -1)


@pytest.mark.parametrize("llf, k", [(-100.0, 2), (-3.5, 0), (250.0, 7)])
def test_compute_aic_penalizes_each_added_parameter(llf, k):
    """At equal log-likelihood one more parameter raises AIC by exactly two."""
    assert compute_aic(llf, k + 1) - compute_aic(llf, k) == pytest.approx(2.0)


def test_nested_zero_coefficient_never_lowers_aic(series):
    """SARIMA(2,1,0) with ar.L2 held at zero has the SARIMA(1,1,0) likelihood and a larger AIC."""
    small = ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    larger = ARIMABaseModel(SARIMASpec(p=2))
    params = [small.params["ar.L1"], 0.0, small.params["sigma2"]]
    nested_llf = float(larger._build_model(series, None).loglike(params))

    assert nested_llf == pytest.approx(small.llf, abs=1e-6)
    nested_aic = compute_aic(nested_llf, len(params))
    assert nested_aic >= small.aic
    assert nested_aic == pytest.approx(small.aic + 2.0, abs=1e-5)


def test_fit_aic_formula(series):
    """AIC equals -2 logLik + 2k with k counting every free parameter, sigma2 included."""
    fit = ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert fit.n_params == 2
    assert list(fit.params.index) == ["ar.L1", "sigma2"]
    assert fit.aic == pytest.approx(-2.0 * fit.llf + 2.0 * fit.n_params)
    assert fit.aic == pytest.approx(fit.results.aic)
    assert fit.nobs == 240 - 13
    assert len(fit.residuals) == 240 - 13
    assert fit.ar == pytest.approx([fit.params["ar.L1"]])
    assert fit.sigma2 == pytest.approx(fit.params["sigma2"])


def test_fit_coefficients_interval(series):
    fit = ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    table = fit.coefficients()
    row = table.loc["ar.L1"]
    assert row["ci_lower"] < row["estimate"] < row["ci_upper"]
    assert row["ci_upper"] - row["estimate"] == pytest.approx(1.959964 * row["std_error"], rel=1e-5)
    assert fit.summary_row() == {"p": 1, "P": 0, "q": 0, "Q": 0, "aic": fit.aic, "n_params": 1}


def test_fit_rejects_short_series(series):
    with pytest.raises(ValueError, match="too short"):
        ARIMABaseModel(SARIMASpec(P=2, Q=2)).fit(series.iloc[:40])


@pytest.mark.parametrize("kwargs", [{"maxiter": 0}, {"instability_threshold": 0}])
def test_model_rejects_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        ARIMABaseModel(SARIMASpec(), **kwargs)


# --- Failures ---

def test_fit_non_convergence_raises(series, mock_sarimax):
    params = pd.Series([0.5, 1.0], index=["ar.L1", "sigma2"])
    mock_sarimax.return_value.fit.return_value = _mock_results(params, np.eye(2) * 0.01, converged=False)
    with pytest.raises(FitConvergenceFailure, match="did not converge") as excinfo:
        ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert excinfo.value.reason == "convergence"


def test_fit_non_finite_likelihood_raises(series, mock_sarimax):
    params = pd.Series([0.5, 1.0], index=["ar.L1", "sigma2"])
    mock_sarimax.return_value.fit.return_value = _mock_results(params, np.eye(2) * 0.01, llf=np.nan)
    with pytest.raises(FitConvergenceFailure) as excinfo:
        ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert excinfo.value.reason == "non_finite"


@pytest.mark.parametrize("error", [np.linalg.LinAlgError("singular"), ValueError("bad start params")])
def test_fit_wraps_statsmodels_errors(series, mock_sarimax, error):
    mock_sarimax.return_value.fit.side_effect = error
    with pytest.raises(FitConvergenceFailure) as excinfo:
        ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert excinfo.value.reason == "error"
    assert isinstance(excinfo.value, RuntimeError)


# --- Numerical instability ---

def test_singular_covariance_sets_nan_errors(series, mock_sarimax):
    """A singular covariance keeps the estimates but reports every standard error as NaN."""
    params = pd.Series([0.5, 1.0], index=["ar.L1", "sigma2"])
    mock_sarimax.return_value.fit.return_value = _mock_results(params, np.array([[1.0, 1.0], [1.0, 1.0]]))
    with pytest.warns(NumericalInstability):
        fit = ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert fit.unstable is True
    assert fit.std_errors.isna().all()
    assert fit.params["ar.L1"] == 0.5
    assert any("ill-conditioned" in w for w in fit.warnings)
    assert np.isfinite(fit.aic)


def test_negligible_standard_error_is_nan(series, mock_sarimax):
    params = pd.Series([0.5, 1.0], index=["ar.L1", "sigma2"])
    mock_sarimax.return_value.fit.return_value = _mock_results(params, np.diag([1e-20, 0.01]))
    with pytest.warns(NumericalInstability):
        fit = ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert np.isnan(fit.std_errors["ar.L1"])
    assert fit.std_errors["sigma2"] == pytest.approx(0.1)


def test_non_finite_covariance_sets_nan_errors(series, mock_sarimax):
    params = pd.Series([0.5, 1.0], index=["ar.L1", "sigma2"])
    mock_sarimax.return_value.fit.return_value = _mock_results(params, np.array([[np.inf, 0.0], [0.0, 0.01]]))
    with pytest.warns(NumericalInstability):
        fit = ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert fit.std_errors.isna().all()


def test_stable_fit_emits_no_instability_warning(series, mock_sarimax):
    params = pd.Series([0.5, 1.0], index=["ar.L1", "sigma2"])
    mock_sarimax.return_value.fit.return_value = _mock_results(params, np.diag([0.01, 0.04]))
    with warnings.catch_warnings():
        warnings.simplefilter("error", NumericalInstability)
        fit = ARIMABaseModel(SARIMASpec(p=1)).fit(series)
    assert fit.unstable is False
    assert fit.std_errors.tolist() == pytest.approx([0.1, 0.2])
    assert isinstance(fit, FitResult)
