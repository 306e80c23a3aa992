"""Module for residual diagnostics of a fitted seasonal ARIMA model.

Diagnostics are advisory: they describe how well the model's assumptions hold but never stop the
pipeline. Three views are provided: Ljung-Box portmanteau tests on the residuals, normal Q-Q
data, and the agreement between a Daniell-smoothed periodogram of the differenced series and the
spectral density implied by the fitted coefficients.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.diagnostic import acorr_ljungbox

from models.base_arima import FitResult
from models.sarima import lag_polynomial

logger = logging.getLogger(__name__)


def _clean_residuals(residuals) -> pd.Series:
    resid = pd.Series(residuals, dtype=float) if not isinstance(residuals, pd.Series) else residuals.astype(float)
    resid = resid.replace([np.inf, -np.inf], np.nan).dropna()
    if resid.empty:
        raise ValueError("residuals cannot be empty.")
    return resid


def ljung_box(residuals, lags: int = 20, alpha: float = 0.05, model_df: int = 0) -> pd.DataFrame:
    """
    Ljung-Box portmanteau test at every lag from 1 to ``lags``.

    Args:
        residuals: Model residuals.
        lags: Largest lag tested. Defaults to 20.
        alpha: Level below which a lag is flagged.
        model_df: Degrees of freedom consumed by the model; lags not exceeding it have no p-value.

    Returns:
        DataFrame with columns lag, lb_stat, lb_pvalue and flagged.

    Raises:
        ValueError: If the arguments are invalid or the series is shorter than ``lags + 1``.
    """
    if not isinstance(lags, (int, np.integer)) or lags < 1:
        raise ValueError("lags must be a positive integer.")
    if not 0 < alpha < 1:
        raise ValueError("alpha must be in (0, 1).")
    if model_df < 0:
        raise ValueError("model_df must be non-negative.")
    resid = _clean_residuals(residuals)
    if len(resid) <= lags:
        raise ValueError(f"Need more than {lags} residuals for the Ljung-Box test, got {len(resid)}.")

    lb = acorr_ljungbox(resid.to_numpy(), lags=list(range(1, lags + 1)), model_df=model_df, return_df=True)
    table = pd.DataFrame({
        "lag": np.arange(1, lags + 1),
        "lb_stat": lb["lb_stat"].to_numpy(dtype=float),
        "lb_pvalue": lb["lb_pvalue"].to_numpy(dtype=float),
    })
    table["flagged"] = table["lb_pvalue"] < alpha
    logger.debug(f"Ljung-Box: {int(table['flagged'].sum())} of {lags} lags below {alpha}")
    return table


@dataclass
class QQData:
    """Normal Q-Q coordinates of the standardized residuals."""

    theoretical: np.ndarray
    sample: np.ndarray
    slope: float
    intercept: float
    r: float
    shapiro_stat: float
    shapiro_pvalue: float


def qq_data(residuals) -> QQData:
    """
    Theoretical normal quantiles against ordered standardized residuals.

    The Shapiro-Wilk statistic is included for information only.
    """
    resid = _clean_residuals(residuals)
    if len(resid) < 3:
        raise ValueError("At least 3 residuals are required for a Q-Q plot.")
    values = resid.to_numpy()
    scale = values.std(ddof=1)
    standardized = (values - values.mean()) / scale if scale > 0 else values - values.mean()
    (osm, osr), (slope, intercept, r) = stats.probplot(standardized, dist="norm")
    shapiro = stats.shapiro(standardized)
    return QQData(
        theoretical=np.asarray(osm),
        sample=np.asarray(osr),
        slope=float(slope),
        intercept=float(intercept),
        r=float(r),
        shapiro_stat=float(shapiro.statistic),
        shapiro_pvalue=float(shapiro.pvalue),
    )


@dataclass
class SmoothedPeriodogram:
    """Daniell-smoothed periodogram with its chi-square confidence band."""

    freqs: np.ndarray
    raw: np.ndarray
    smoothed: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    df: float
    half_width: int
    confidence: float


def smoothed_periodogram(x, half_width: int = 8, confidence: float = 0.95) -> SmoothedPeriodogram:
    """
    Daniell-smoothed periodogram at the Fourier frequencies in (0, 0.5].

    The raw periodogram is ``|FFT(x - mean)|^2 / n``. It is averaged over a centered window of
    ``2 * half_width + 1`` frequencies, wrapping around the frequency circle; the zero frequency
    is replaced by the mean of its neighbours. The band uses ``df = 2 (2 m + 1)`` equivalent
    degrees of freedom.

    Args:
        x: Stationary (differenced) series.
        half_width: Daniell kernel half-width m. Defaults to 8.
        confidence: Coverage of the band.

    Returns:
        SmoothedPeriodogram in cycles per observation.

    Raises:
        ValueError: If the series is too short for the kernel or arguments are invalid.
    """
    if not isinstance(half_width, (int, np.integer)) or half_width < 0:
        raise ValueError("half_width must be a non-negative integer.")
    if not 0 < confidence < 1:
        raise ValueError("confidence must be in (0, 1).")
    values = np.asarray(x, dtype=float)
    values = values[np.isfinite(values)]
    n = len(values)
    width = 2 * half_width + 1
    if n < max(4, width):
        raise ValueError(f"Series of length {n} is too short for a Daniell kernel of width {width}.")

    pgram = np.abs(np.fft.fft(values - values.mean())) ** 2 / n
    pgram[0] = 0.5 * (pgram[1] + pgram[-1])
    offsets = np.arange(-half_width, half_width + 1)
    smooth_full = np.mean(pgram[(np.arange(n)[:, None] + offsets[None, :]) % n], axis=1)

    k = np.arange(1, n // 2 + 1)
    df = 2.0 * width
    a = 1 - confidence
    smoothed = smooth_full[k]
    return SmoothedPeriodogram(
        freqs=k / n,
        raw=pgram[k],
        smoothed=smoothed,
        lower=df * smoothed / stats.chi2.ppf(1 - a / 2, df),
        upper=df * smoothed / stats.chi2.ppf(a / 2, df),
        df=df,
        half_width=int(half_width),
        confidence=confidence,
    )


def arma_spectral_density(
    freqs,
    ar=(),
    ma=(),
    seasonal_ar=(),
    seasonal_ma=(),
    s: int = 12,
    sigma2: float = 1.0,
) -> np.ndarray:
    """
    Spectral density of a multiplicative seasonal ARMA process.

    ``f(freq) = sigma2 |theta(z) Theta(z^s)|^2 / |phi(z) Phi(z^s)|^2`` with ``z = exp(-2 pi i freq)``,
    using the sign convention of ``lag_polynomial``.
    """
    if sigma2 <= 0:
        raise ValueError("sigma2 must be positive.")
    z = np.exp(-2j * np.pi * np.asarray(freqs, dtype=float))
    ar_poly = np.convolve(lag_polynomial(ar), lag_polynomial(seasonal_ar, s))
    ma_poly = np.convolve(lag_polynomial(ma, sign=1.0), lag_polynomial(seasonal_ma, s, sign=1.0))
    num = np.abs(np.polynomial.polynomial.polyval(z, ma_poly)) ** 2
    den = np.abs(np.polynomial.polynomial.polyval(z, ar_poly)) ** 2
    return sigma2 * num / den


@dataclass
class SpectralAgreement:
    """Comparison of the smoothed periodogram and the fitted spectral density."""

    periodogram: SmoothedPeriodogram
    theoretical: np.ndarray
    inside: np.ndarray
    coverage: float
    all_within: bool

    @property
    def freqs(self) -> np.ndarray:
        return self.periodogram.freqs


def spectral_agreement(differenced, fit: FitResult, half_width: int = 8, confidence: float = 0.95) -> SpectralAgreement:
    """
    Check whether the fitted spectral density lies inside the periodogram band.

    Args:
        differenced: Differenced (and outlier-adjusted) series the ARMA part describes.
        fit: Fitted model providing the coefficients and innovation variance.
        half_width: Daniell kernel half-width.
        confidence: Coverage of the band.

    Returns:
        SpectralAgreement with the fraction of frequencies covered and whether all are.
    """
    pgram = smoothed_periodogram(differenced, half_width=half_width, confidence=confidence)
    theoretical = arma_spectral_density(
        pgram.freqs, fit.ar, fit.ma, fit.seasonal_ar, fit.seasonal_ma, s=fit.spec.s, sigma2=fit.sigma2
    )
    inside = (theoretical >= pgram.lower) & (theoretical <= pgram.upper)
    coverage = float(inside.mean())
    logger.debug(f"Spectral agreement: {coverage:.1%} of {len(inside)} frequencies inside the band")
    return SpectralAgreement(
        periodogram=pgram,
        theoretical=theoretical,
        inside=inside,
        coverage=coverage,
        all_within=bool(inside.all()),
    )


@dataclass
class DiagnosticsReport:
    """All residual diagnostics for one fit."""

    ljung_box: pd.DataFrame
    qq: QQData
    spectral: Optional[SpectralAgreement]
    residuals: pd.Series
    alpha: float

    @property
    def flagged_lags(self) -> list:
        return self.ljung_box.loc[self.ljung_box["flagged"], "lag"].tolist()

    def summary(self) -> Dict[str, Any]:
        pvalues = self.ljung_box["lb_pvalue"].dropna()
        return {
            "ljung_box_lags": int(len(self.ljung_box)),
            "ljung_box_flagged": self.flagged_lags,
            "ljung_box_min_pvalue": float(pvalues.min()) if not pvalues.empty else float("nan"),
            "qq_correlation": self.qq.r,
            "shapiro_pvalue": self.qq.shapiro_pvalue,
            "spectral_coverage": self.spectral.coverage if self.spectral is not None else float("nan"),
            "spectral_all_within": self.spectral.all_within if self.spectral is not None else None,
        }


def run_diagnostics(fit: FitResult, differenced_series, config: Optional[Dict[str, Any]] = None) -> DiagnosticsReport:
    """
    Run every diagnostic for a fit.

    Args:
        fit: Final fitted model.
        differenced_series: Differenced, outlier-adjusted series used for the spectral comparison.
        config: The ``diagnostics`` configuration section; defaults are used for missing keys.

    Returns:
        DiagnosticsReport. A spectral comparison that cannot be computed is logged and left as None.
    """
    cfg = config or {}
    alpha = cfg.get("alpha", 0.05)
    lb = ljung_box(
        fit.residuals,
        lags=cfg.get("ljung_box_lags", 20),
        alpha=alpha,
        model_df=cfg.get("model_df", 0),
    )
    qq = qq_data(fit.residuals)
    try:
        spectral = spectral_agreement(
            differenced_series,
            fit,
            half_width=cfg.get("daniell_half_width", 8),
            confidence=cfg.get("confidence", 0.95),
        )
    except ValueError as e:
        logger.warning(f"Spectral comparison skipped: {str(e)}")
        spectral = None

    report = DiagnosticsReport(ljung_box=lb, qq=qq, spectral=spectral, residuals=_clean_residuals(fit.residuals), alpha=alpha)
    summary = report.summary()
    logger.info(
        f"Diagnostics for {fit.spec.label}: Ljung-Box flagged lags {summary['ljung_box_flagged'] or 'none'}, "
        f"Q-Q r={summary['qq_correlation']:.4f}, spectral coverage {summary['spectral_coverage']:.1%}"
    )
    return report
