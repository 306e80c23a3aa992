"""Base module for fitting seasonal ARIMA specifications.

This module defines the SARIMASpec and FitResult containers and the ARIMABaseModel class, which
fits one fixed specification by Gaussian maximum likelihood using the statsmodels SARIMAX state
space implementation, computes the AIC from the log-likelihood and the number of free
parameters, and flags standard errors that are undefined at the optimum.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from statsmodels.tsa.statespace.sarimax import SARIMAX

from utils.exceptions import FitConvergenceFailure, NumericalInstability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SARIMASpec:
    """Orders of a multiplicative seasonal ARIMA(p, d, q)x(P, D, Q)_s model."""

    p: int = 0
    d: int = 1
    q: int = 0
    P: int = 0
    D: int = 1
    Q: int = 0
    s: int = 12

    def __post_init__(self) -> None:
        for name in ("p", "d", "q", "P", "D", "Q", "s"):
            value = getattr(self, name)
            if not isinstance(value, (int, np.integer)) or isinstance(value, bool) or value < 0:
                raise ValueError(f"Parameter {name} must be a non-negative integer.")
        if (self.P or self.D or self.Q) and self.s <= 1:
            raise ValueError("seasonal period s must be greater than 1 for seasonal terms.")

    @classmethod
    def from_params(cls, params: Dict[str, int], d: int = 1, D: int = 1, s: int = 12) -> "SARIMASpec":
        """Build a specification from a grid combination holding p, q, P and Q."""
        return cls(
            p=int(params.get("p", 0)),
            d=int(params.get("d", d)),
            q=int(params.get("q", 0)),
            P=int(params.get("P", 0)),
            D=int(params.get("D", D)),
            Q=int(params.get("Q", 0)),
            s=int(params.get("s", s)),
        )

    @property
    def order(self) -> tuple:
        return (self.p, self.d, self.q)

    @property
    def seasonal_order(self) -> tuple:
        return (self.P, self.D, self.Q, self.s)

    @property
    def n_arma(self) -> int:
        """Number of AR and MA coefficients, seasonal ones included."""
        return self.p + self.q + self.P + self.Q

    @property
    def label(self) -> str:
        return f"SARIMA({self.p},{self.d},{self.q})x({self.P},{self.D},{self.Q})_{self.s}"

    def as_dict(self) -> Dict[str, int]:
        return {"p": self.p, "d": self.d, "q": self.q, "P": self.P, "D": self.D, "Q": self.Q, "s": self.s}


@dataclass
class FitResult:
    """Estimates and scores for one fitted specification."""

    spec: SARIMASpec
    params: pd.Series
    std_errors: pd.Series
    llf: float
    aic: float
    n_params: int
    nobs: int
    residuals: pd.Series
    sigma2: float
    ar: np.ndarray
    ma: np.ndarray
    seasonal_ar: np.ndarray
    seasonal_ma: np.ndarray
    exog_names: List[str] = field(default_factory=list)
    exog: Optional[pd.DataFrame] = field(default=None, repr=False)
    warnings: List[str] = field(default_factory=list)
    outliers: List[Any] = field(default_factory=list)
    unstable: bool = False
    results: Any = field(default=None, repr=False)

    def coefficients(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Coefficient table with standard errors and Wald intervals.

        Args:
            alpha: Significance level of the intervals. Defaults to 0.05.

        Returns:
            DataFrame indexed by parameter name with estimate, std_error, z, ci_lower and ci_upper.
            Undefined standard errors yield NaN in the derived columns.
        """
        from scipy.stats import norm

        crit = norm.ppf(1 - alpha / 2)
        se = self.std_errors.reindex(self.params.index)
        return pd.DataFrame({
            "estimate": self.params,
            "std_error": se,
            "z": self.params / se,
            "ci_lower": self.params - crit * se,
            "ci_upper": self.params + crit * se,
        })

    def summary_row(self) -> Dict[str, Any]:
        spec = self.spec
        return {"p": spec.p, "P": spec.P, "q": spec.q, "Q": spec.Q, "aic": self.aic, "n_params": spec.n_arma}


def compute_aic(llf: float, n_params: int) -> float:
    """Akaike Information Criterion, ``-2 * llf + 2 * n_params``."""
    if n_params < 0:
        raise ValueError("n_params must be non-negative.")
    return -2.0 * float(llf) + 2.0 * n_params


class ARIMABaseModel:
    """Fits a single seasonal ARIMA specification by maximum likelihood."""

    def __init__(
        self,
        spec: SARIMASpec,
        maxiter: int = 200,
        cov_type: str = "approx",
        instability_threshold: float = 1e10,
    ) -> None:
        """
        Initialize the model.

        Args:
            spec: Orders of the model to fit.
            maxiter: Maximum number of optimizer iterations.
            cov_type: statsmodels covariance estimator. 'approx' uses the numerical Hessian.
            instability_threshold: Condition number of the parameter correlation matrix above
                which standard errors are treated as undefined.

        Raises:
            ValueError: If maxiter or instability_threshold are not positive.
        """
        if maxiter < 1:
            raise ValueError("maxiter must be positive.")
        if instability_threshold <= 0:
            raise ValueError("instability_threshold must be positive.")
        self.spec = spec
        self.maxiter = maxiter
        self.cov_type = cov_type
        self.instability_threshold = instability_threshold
        logger.debug(f"Initialized {self.__class__.__name__} for {spec.label}")

    def _build_model(self, series: pd.Series, exog: Optional[pd.DataFrame]) -> SARIMAX:
        return SARIMAX(
            endog=series,
            exog=exog,
            order=self.spec.order,
            seasonal_order=self.spec.seasonal_order,
            trend="n",
            simple_differencing=True,
            enforce_stationarity=True,
            enforce_invertibility=True,
        )

    def _standard_errors(self, res: Any, messages: List[str]) -> pd.Series:
        """
        Extract standard errors, replacing undefined ones with NaN.

        Standard errors are undefined when the covariance matrix is non-finite, when the
        parameter correlation matrix is ill-conditioned, or when an individual standard error
        is non-positive or negligible relative to its estimate.
        """
        params = res.params
        try:
            cov = np.asarray(res.cov_params(), dtype=float)
        except (ValueError, np.linalg.LinAlgError) as e:
            messages.append(f"Covariance matrix unavailable: {e}")
            return pd.Series(np.nan, index=params.index)

        if cov.size == 0:
            return pd.Series(dtype=float, index=params.index)
        diag = np.diag(cov)
        se = pd.Series(np.sqrt(np.where(diag > 0, diag, np.nan)), index=params.index)

        if not np.isfinite(cov).all():
            messages.append("Covariance matrix contains non-finite values; standard errors undefined.")
            return pd.Series(np.nan, index=params.index)

        if np.isfinite(se).all():
            corr = cov / np.outer(se.to_numpy(), se.to_numpy())
            cond = np.linalg.cond(corr)
            if not np.isfinite(cond) or cond > self.instability_threshold:
                messages.append(
                    f"Parameter covariance is ill-conditioned (condition number {cond:.3g}); standard errors undefined."
                )
                return pd.Series(np.nan, index=params.index)

        tiny = se <= 1e-8 * np.maximum(1.0, params.abs())
        bad = se.isna() | tiny
        if bad.any():
            messages.append(f"Undefined standard errors for: {', '.join(se.index[bad])}")
            se[bad] = np.nan
        return se

    def fit(self, series: pd.Series, exog: Optional[pd.DataFrame] = None) -> FitResult:
        """
        Fit the specification to a (power-transformed, undifferenced) series.

        Differencing is part of the model; the likelihood is that of the differenced series.

        Args:
            series: Series to model, with a regular DatetimeIndex.
            exog: Optional regressors aligned with ``series``.

        Returns:
            FitResult with estimates, standard errors, log-likelihood and AIC.

        Raises:
            ValueError: If the series is too short for the specification.
            FitConvergenceFailure: If estimation fails, does not converge or yields a
                non-finite likelihood.
        """
        spec = self.spec
        min_len = spec.d + spec.D * spec.s + spec.p + spec.P * spec.s + spec.q + spec.Q * spec.s + 2
        if len(series) < min_len:
            raise ValueError(f"Series of length {len(series)} is too short for {spec.label}.")

        logger.debug(f"Fitting {spec.label} with {0 if exog is None else exog.shape[1]} regressor(s)")
        messages: List[str] = []
        try:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                model = self._build_model(series, exog)
                res = model.fit(disp=False, maxiter=self.maxiter, cov_type=self.cov_type)
            messages.extend(str(w.message) for w in caught)
        except (ValueError, np.linalg.LinAlgError, IndexError) as e:
            raise FitConvergenceFailure(f"{spec.label} estimation failed: {e}", reason="error") from e

        retvals = res.mle_retvals or {}
        if not retvals.get("converged", True):
            raise FitConvergenceFailure(f"{spec.label} optimizer did not converge", reason="convergence")
        llf = float(res.llf)
        if not np.isfinite(llf):
            raise FitConvergenceFailure(f"{spec.label} produced a non-finite log-likelihood", reason="non_finite")

        std_errors = self._standard_errors(res, messages)
        unstable = bool(std_errors.isna().any())
        if unstable:
            warnings.warn(
                f"{spec.label}: standard errors undefined at the optimum; consider outlier terms or a different specification.",
                NumericalInstability,
            )
            logger.warning(f"{spec.label}: numerically unstable standard errors")

        n_params = int(len(res.params))
        aic = compute_aic(llf, n_params)
        exog_names = list(exog.columns) if exog is not None else []
        fit = FitResult(
            spec=spec,
            params=res.params.copy(),
            std_errors=std_errors,
            llf=llf,
            aic=aic,
            n_params=n_params,
            nobs=int(res.nobs),
            residuals=res.resid.copy(),
            sigma2=float(res.params.get("sigma2", np.nan)),
            ar=np.asarray(res.arparams if spec.p else [], dtype=float),
            ma=np.asarray(res.maparams if spec.q else [], dtype=float),
            seasonal_ar=np.asarray(res.seasonalarparams if spec.P else [], dtype=float),
            seasonal_ma=np.asarray(res.seasonalmaparams if spec.Q else [], dtype=float),
            exog_names=exog_names,
            exog=exog,
            warnings=messages,
            unstable=unstable,
            results=res,
        )
        logger.debug(f"{spec.label}: llf={llf:.3f}, aic={aic:.3f}, k={n_params}")
        return fit
