"""Module for the seasonal ARIMA model with innovative-outlier correction.

The SeasonalARIMA class extends ARIMABaseModel with a two-pass protocol: fit the specification,
scan the standardized residuals for innovative outliers, then refit with impulse-response
covariates entering at every flagged time index.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd
from scipy.stats import norm
from statsmodels.tsa.arima_process import arma2ma

from models.base_arima import ARIMABaseModel, FitResult, SARIMASpec
from utils.exceptions import FitConvergenceFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutlierTerm:
    """An innovative outlier located by the residual scan."""

    position: int
    timestamp: pd.Timestamp
    statistic: float
    kind: str = "IO"

    @property
    def name(self) -> str:
        stamp = self.timestamp.strftime("%Y_%m") if isinstance(self.timestamp, pd.Timestamp) else str(self.timestamp)
        return f"{self.kind}_{stamp}"


def lag_polynomial(coefs: np.ndarray, step: int = 1, sign: float = -1.0) -> np.ndarray:
    """
    Build ``1 + sign * (c_1 B^step + c_2 B^(2 step) + ...)`` as a coefficient array in powers of B.

    AR polynomials use ``sign=-1`` and MA polynomials ``sign=+1``, following the statsmodels
    convention ``y_t = phi_1 y_{t-1} + ... + e_t + theta_1 e_{t-1} + ...``.
    """
    coefs = np.asarray(coefs, dtype=float)
    poly = np.zeros(len(coefs) * step + 1)
    poly[0] = 1.0
    for i, c in enumerate(coefs, start=1):
        poly[i * step] = sign * c
    return poly


def model_polynomials(fit: FitResult, include_differencing: bool = True):
    """
    Reduced AR and MA lag polynomials of a fitted model.

    Args:
        fit: Fitted model.
        include_differencing: Multiply the AR side by ``(1 - B)^d (1 - B^s)^D``.

    Returns:
        Tuple ``(ar, ma)`` of coefficient arrays in increasing powers of B.
    """
    spec = fit.spec
    ar = np.convolve(lag_polynomial(fit.ar), lag_polynomial(fit.seasonal_ar, spec.s))
    ma = np.convolve(lag_polynomial(fit.ma, sign=1.0), lag_polynomial(fit.seasonal_ma, spec.s, sign=1.0))
    if include_differencing:
        for _ in range(spec.d):
            ar = np.convolve(ar, [1.0, -1.0])
        for _ in range(spec.D):
            ar = np.convolve(ar, lag_polynomial([1.0], spec.s))
    return ar, ma


def detect_innovative_outliers(
    residuals: pd.Series, series_index: pd.Index, alpha: float = 0.05, robust: bool = True
) -> List[OutlierTerm]:
    """
    Flag residuals that are too large to be Gaussian innovations.

    The statistic for an innovative outlier at time T is the standardized residual e_T / sigma.
    The critical value is the Bonferroni-adjusted normal quantile ``Phi^-1(1 - alpha / (2 n))``.

    Args:
        residuals: Model residuals indexed by timestamp.
        series_index: Index of the modeled series, used to report positions.
        alpha: Family-wise significance level.
        robust: Estimate sigma as ``sqrt(pi / 2) * mean(|e|)`` instead of the standard deviation.

    Returns:
        Flagged outliers ordered by decreasing absolute statistic.
    """
    if not 0 < alpha < 1:
        raise ValueError("alpha must be in (0, 1).")
    resid = residuals.dropna()
    n = len(resid)
    if n < 3:
        return []
    values = resid.to_numpy(dtype=float)
    sigma = np.sqrt(np.pi / 2.0) * np.mean(np.abs(values)) if robust else np.std(values, ddof=1)
    if not np.isfinite(sigma) or sigma <= 0:
        return []
    crit = norm.ppf(1 - alpha / (2.0 * n))
    stats = values / sigma

    flagged = [
        OutlierTerm(position=int(series_index.get_loc(ts)), timestamp=ts, statistic=float(stat))
        for ts, stat in zip(resid.index, stats)
        if abs(stat) > crit
    ]
    flagged.sort(key=lambda o: abs(o.statistic), reverse=True)
    return flagged


def impulse_response_covariate(fit: FitResult, n_obs: int, position: int) -> np.ndarray:
    """
    Covariate for an innovative outlier entering at ``position``.

    The unit shock propagates through the full fitted model, differencing included, so the
    regressor equals the psi-weights of that model starting at ``position``.
    """
    if not 0 <= position < n_obs:
        raise ValueError(f"position must be in [0, {n_obs}), got {position}.")
    ar, ma = model_polynomials(fit, include_differencing=True)
    covariate = np.zeros(n_obs)
    covariate[position:] = arma2ma(ar, ma, lags=n_obs - position)
    return covariate


def outlier_adjusted_series(series: pd.Series, fit: FitResult) -> pd.Series:
    """Remove the estimated outlier effects from ``series``; unchanged when the fit has no regressors."""
    if fit.exog is None or not fit.exog_names:
        return series
    effects = fit.exog[fit.exog_names].to_numpy() @ fit.params[fit.exog_names].to_numpy()
    return series - pd.Series(effects, index=series.index)


class SeasonalARIMA(ARIMABaseModel):
    """Seasonal ARIMA model with the fit, detect, refit outlier protocol."""

    def build_outlier_regressors(self, fit: FitResult, series: pd.Series, outliers: List[OutlierTerm]) -> pd.DataFrame:
        """
        Assemble impulse-response covariates for the given outliers.

        Args:
            fit: Fit whose coefficients define the impulse response.
            series: Modeled series.
            outliers: Outliers to encode.

        Returns:
            DataFrame aligned with ``series``, one column per outlier.
        """
        columns = {
            o.name: impulse_response_covariate(fit, len(series), o.position)
            for o in sorted(outliers, key=lambda o: o.position)
        }
        return pd.DataFrame(columns, index=series.index)

    def fit_with_outliers(
        self,
        series: pd.Series,
        alpha: float = 0.05,
        robust: bool = True,
        max_iter: int = 1,
    ) -> FitResult:
        """
        Fit, detect innovative outliers, and refit with their covariates.

        Args:
            series: Series to model.
            alpha: Significance level of the outlier scan.
            robust: Use the robust residual scale in the scan.
            max_iter: Number of detect-and-refit passes after the initial fit.

        Returns:
            The final FitResult with ``outliers`` populated. When a refit fails, the last
            successful fit is returned and the failure is recorded in its warnings.

        Raises:
            FitConvergenceFailure: If the initial fit fails.
        """
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1.")
        fit = self.fit(series)
        initial_aic = fit.aic
        outliers: List[OutlierTerm] = []

        for iteration in range(max_iter):
            known = {o.position for o in outliers}
            found = [
                o for o in detect_innovative_outliers(fit.residuals, series.index, alpha=alpha, robust=robust)
                if o.position not in known
            ]
            if not found:
                logger.info(f"{self.spec.label}: no further innovative outliers after pass {iteration}")
                break
            logger.info(
                f"{self.spec.label}: detected {len(found)} innovative outlier(s) at "
                f"{', '.join(f'{o.timestamp:%Y-%m}' for o in found)}"
            )
            candidate_outliers = outliers + found
            exog = self.build_outlier_regressors(fit, series, candidate_outliers)
            try:
                refit = self.fit(series, exog=exog)
            except FitConvergenceFailure as e:
                logger.warning(f"{self.spec.label}: refit with outlier terms failed: {e}")
                fit.warnings.append(f"Refit with outlier terms failed: {e}")
                break
            outliers = candidate_outliers
            fit = refit

        fit.outliers = outliers
        if outliers:
            logger.info(f"{self.spec.label}: AIC {initial_aic:.3f} -> {fit.aic:.3f} with {len(outliers)} outlier term(s)")
        return fit


def fit_selected_model(
    series: pd.Series,
    spec: SARIMASpec,
    outlier_config: Optional[dict] = None,
    maxiter: int = 200,
) -> FitResult:
    """
    Fit the analyst-selected specification, with outlier correction when enabled.

    Args:
        series: Power-transformed series.
        spec: Selected specification.
        outlier_config: The ``outliers`` configuration section.
        maxiter: Maximum optimizer iterations.

    Returns:
        Final FitResult.
    """
    cfg = outlier_config or {}
    model = SeasonalARIMA(spec, maxiter=maxiter)
    if cfg.get("enabled", True):
        return model.fit_with_outliers(
            series,
            alpha=cfg.get("alpha", 0.05),
            robust=cfg.get("robust", True),
            max_iter=cfg.get("max_iter", 1),
        )
    return model.fit(series)
