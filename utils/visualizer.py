"""Module for visualizing the publication-count analysis.

This module provides the Visualizer class with methods to create and save plots for the raw
series, its seasonal decomposition, correlograms of the differenced series, the Box-Cox profile
log-likelihood, residual diagnostics, the normal Q-Q plot and the spectral comparison.
"""

import logging
import os

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from statsmodels.tsa.seasonal import seasonal_decompose
from statsmodels.tsa.stattools import acf, pacf

from utils.diagnostics import DiagnosticsReport, QQData, SpectralAgreement
from utils.preprocessor import BoxCoxSelection

logger = logging.getLogger(__name__)


def _plot_dir(dataset_name: str, output_dir: str) -> str:
    if not dataset_name:
        raise ValueError("dataset_name cannot be empty.")
    path = os.path.join(output_dir, "plots", dataset_name)
    os.makedirs(path, exist_ok=True)
    return path


def _save(output_path: str, what: str) -> str:
    try:
        plt.savefig(output_path)
        plt.close()
    except OSError as e:
        logger.error(f"Failed to save {what} plot: {str(e)}", exc_info=True)
        raise RuntimeError(f"Failed to save {what} plot: {str(e)}")
    logger.info(f"Saved {what} plot to {output_path}")
    return output_path


def _check_series(series: pd.Series) -> None:
    if series is None or len(series) == 0:
        raise ValueError("series cannot be empty.")
    if not isinstance(series.index, pd.DatetimeIndex):
        raise ValueError("series must have a datetime index.")


class Visualizer:
    """Class for plotting the exploratory analysis and the fitted model's diagnostics."""

    @staticmethod
    def plot_series(dataset_name: str, series: pd.Series, output_dir: str = "results") -> str:
        """
        Plot the raw monthly counts.

        Args:
            dataset_name: Name of the dataset for organizing output files.
            series: Monthly series with a datetime index.
            output_dir: Root directory of the results.

        Returns:
            Path of the saved figure.

        Raises:
            ValueError: If the series is empty or not indexed by dates.
            RuntimeError: If plot saving fails due to I/O errors.
        """
        _check_series(series)
        plot_dir = _plot_dir(dataset_name, output_dir)

        plt.figure(figsize=(12, 5))
        plt.plot(series.index, series.values, label=series.name or "count")
        plt.title(f"{dataset_name} - monthly publications")
        plt.xlabel("Date")
        plt.ylabel("Count")
        plt.legend()
        plt.grid(True)
        return _save(os.path.join(plot_dir, "series.png"), "series")

    @staticmethod
    def plot_decomposition(dataset_name: str, series: pd.Series, period: int = 12, output_dir: str = "results") -> str:
        """
        Plot the additive trend/seasonal/remainder decomposition of the series.

        Raises:
            ValueError: If the series does not cover two full seasonal periods.
            RuntimeError: If plot saving fails due to I/O errors.
        """
        _check_series(series)
        if len(series) < 2 * period:
            raise ValueError(f"series must cover at least two periods of {period} observations.")
        plot_dir = _plot_dir(dataset_name, output_dir)
        decomposition = seasonal_decompose(series, model="additive", period=period)

        plt.figure(figsize=(12, 9))
        panels = [
            ("Observed", decomposition.observed),
            ("Trend", decomposition.trend),
            ("Seasonal", decomposition.seasonal),
            ("Remainder", decomposition.resid),
        ]
        for i, (title, component) in enumerate(panels, start=1):
            plt.subplot(4, 1, i)
            plt.plot(component.index, component.values)
            plt.ylabel(title)
            plt.grid(True)
        plt.suptitle(f"{dataset_name} - seasonal decomposition (period {period})")
        return _save(os.path.join(plot_dir, "decomposition.png"), "decomposition")

    @staticmethod
    def plot_acf_pacf(dataset_name: str, series: pd.Series, lags: int = 48, output_dir: str = "results") -> str:
        """
        Plot the sample ACF and PACF of a (differenced) series with approximate 95% bounds.

        Raises:
            ValueError: If lags is not positive or the series is too short.
            RuntimeError: If plot saving fails due to I/O errors.
        """
        _check_series(series)
        values = series.dropna().to_numpy(dtype=float)
        if lags < 1:
            raise ValueError("lags must be positive.")
        if len(values) < 2 * lags + 1:
            raise ValueError(f"series of length {len(values)} is too short for {lags} lags.")
        plot_dir = _plot_dir(dataset_name, output_dir)
        bound = 1.96 / np.sqrt(len(values))
        lag_axis = np.arange(1, lags + 1)

        plt.figure(figsize=(12, 7))
        for i, (title, coefs) in enumerate(
            [("ACF", acf(values, nlags=lags)[1:]), ("PACF", pacf(values, nlags=lags)[1:])], start=1
        ):
            plt.subplot(2, 1, i)
            plt.bar(lag_axis, coefs, width=0.3)
            plt.axhline(0.0, color="black", linewidth=0.8)
            plt.axhline(bound, color="blue", linestyle="--")
            plt.axhline(-bound, color="blue", linestyle="--")
            plt.ylabel(title)
            plt.grid(True)
        plt.xlabel("Lag")
        plt.suptitle(f"{dataset_name} - correlograms of the differenced series")
        return _save(os.path.join(plot_dir, "acf_pacf.png"), "ACF/PACF")

    @staticmethod
    def plot_boxcox_profile(dataset_name: str, selection: BoxCoxSelection, output_dir: str = "results") -> str:
        """
        Plot the Box-Cox profile log-likelihood with the selected lambda and its interval.

        Raises:
            ValueError: If the selection carries no log-likelihood table.
            RuntimeError: If plot saving fails due to I/O errors.
        """
        if selection.loglik is None or selection.loglik.empty:
            raise ValueError("selection has no log-likelihood profile.")
        plot_dir = _plot_dir(dataset_name, output_dir)
        profile = selection.loglik

        plt.figure(figsize=(8, 5))
        plt.plot(profile["lambda"], profile["loglik"], marker="o")
        plt.axvline(selection.lam, color="red", label=f"lambda = {selection.lam:.2f}")
        plt.axvline(selection.ci[0], color="gray", linestyle="--", label="95% interval")
        plt.axvline(selection.ci[1], color="gray", linestyle="--")
        plt.title(f"{dataset_name} - Box-Cox profile log-likelihood (AR({selection.ar_order}) working model)")
        plt.xlabel("lambda")
        plt.ylabel("log-likelihood")
        plt.legend()
        plt.grid(True)
        return _save(os.path.join(plot_dir, "boxcox_profile.png"), "Box-Cox profile")

    @staticmethod
    def plot_residual_diagnostics(
        dataset_name: str, model_label: str, report: DiagnosticsReport, output_dir: str = "results"
    ) -> str:
        """
        Plot standardized residuals, their ACF and the Ljung-Box p-values.

        Raises:
            RuntimeError: If plot saving fails due to I/O errors.
        """
        plot_dir = _plot_dir(dataset_name, output_dir)
        resid = report.residuals
        standardized = (resid - resid.mean()) / resid.std(ddof=1)
        n_lags = int(report.ljung_box["lag"].max())
        resid_acf = acf(resid.to_numpy(), nlags=n_lags)[1:]
        bound = 1.96 / np.sqrt(len(resid))

        plt.figure(figsize=(12, 10))
        plt.subplot(3, 1, 1)
        plt.plot(standardized.index, standardized.values, marker=".", linestyle="-")
        plt.axhline(0.0, color="black", linewidth=0.8)
        plt.ylabel("Standardized residuals")
        plt.grid(True)

        plt.subplot(3, 1, 2)
        plt.bar(np.arange(1, n_lags + 1), resid_acf, width=0.3)
        plt.axhline(bound, color="blue", linestyle="--")
        plt.axhline(-bound, color="blue", linestyle="--")
        plt.ylabel("Residual ACF")
        plt.grid(True)

        plt.subplot(3, 1, 3)
        plt.plot(report.ljung_box["lag"], report.ljung_box["lb_pvalue"], marker="o", linestyle="")
        plt.axhline(report.alpha, color="blue", linestyle="--")
        plt.ylim(0.0, 1.0)
        plt.xlabel("Lag")
        plt.ylabel("Ljung-Box p-value")
        plt.grid(True)
        plt.suptitle(f"{dataset_name} - {model_label} residual diagnostics")
        return _save(os.path.join(plot_dir, "residual_diagnostics.png"), "residual diagnostics")

    @staticmethod
    def plot_qq(dataset_name: str, model_label: str, qq: QQData, output_dir: str = "results") -> str:
        """Plot the normal Q-Q plot of the standardized residuals."""
        plot_dir = _plot_dir(dataset_name, output_dir)

        plt.figure(figsize=(6, 6))
        plt.plot(qq.theoretical, qq.sample, marker="o", linestyle="", label="Residuals")
        plt.plot(qq.theoretical, qq.slope * qq.theoretical + qq.intercept, color="red", label="Fit line")
        plt.title(f"{dataset_name} - {model_label} normal Q-Q (r = {qq.r:.3f})")
        plt.xlabel("Theoretical quantiles")
        plt.ylabel("Standardized residual quantiles")
        plt.legend()
        plt.grid(True)
        return _save(os.path.join(plot_dir, "qq.png"), "Q-Q")

    @staticmethod
    def plot_spectral(dataset_name: str, model_label: str, agreement: SpectralAgreement, output_dir: str = "results") -> str:
        """Plot the smoothed periodogram band against the fitted spectral density on a log scale."""
        plot_dir = _plot_dir(dataset_name, output_dir)
        pgram = agreement.periodogram

        plt.figure(figsize=(10, 6))
        plt.fill_between(pgram.freqs, pgram.lower, pgram.upper, alpha=0.3, label=f"{pgram.confidence:.0%} band")
        plt.plot(pgram.freqs, pgram.smoothed, label=f"Daniell-smoothed periodogram (m={pgram.half_width})")
        plt.plot(pgram.freqs, agreement.theoretical, color="red", label="Fitted model spectrum")
        plt.yscale("log")
        plt.title(f"{dataset_name} - {model_label} spectral comparison (coverage {agreement.coverage:.0%})")
        plt.xlabel("Frequency (cycles per month)")
        plt.ylabel("Spectral density")
        plt.legend()
        plt.grid(True)
        return _save(os.path.join(plot_dir, "spectral.png"), "spectral")
