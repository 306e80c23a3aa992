"""
Module for running the seasonal ARIMA report on a monthly publication-count series.

This module loads the configured count table, selects the Box-Cox parameter, searches the
seasonal ARIMA order grid (or loads it from the cache), fits the chosen specification with
innovative-outlier correction, runs the residual diagnostics and writes plots and a Markdown
report.
"""

import argparse
import logging
import os
import sys
from typing import Dict, Tuple

import numpy as np
import pandas as pd

from models.base_arima import FitResult, SARIMASpec
from models.model_search import SearchResults, search_with_cache
from models.sarima import fit_selected_model, outlier_adjusted_series
from utils.config_utils import ConfigValidationError, load_config
from utils.dataset import MonthlyCountDataset
from utils.diagnostics import DiagnosticsReport, run_diagnostics
from utils.exceptions import DomainError, FitConvergenceFailure
from utils.logging_utils import log_outliers, log_selected_model
from utils.preprocessor import Preprocessor, difference
from utils.report import write_report
from utils.visualizer import Visualizer


def setup_logging(log_dir: str = "results/logs") -> None:
    """
    Configure logging to file and console.

    Args:
        log_dir (str): Directory to store log files. Defaults to 'results/logs'.
    """
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=[
            logging.FileHandler(os.path.join(log_dir, "report.log")),
            logging.StreamHandler()
        ]
    )


logger = logging.getLogger(__name__)


def select_specification(config: Dict, results: SearchResults, d: int, D: int, s: int) -> Tuple[SARIMASpec, str]:
    """
    Choose the specification for the final fit.

    The ``model`` section of the configuration takes precedence; otherwise the most parsimonious
    candidate within two AIC units of the minimum is used.

    Raises:
        RuntimeError: If no model is configured and the search produced no successful fit.
    """
    configured = config.get("model")
    if configured:
        spec = SARIMASpec.from_params(configured, d=d, D=D, s=s)
        log_selected_model(spec.label, "config")
        return spec, "the configuration"

    suggested = results.suggest()
    if suggested.empty:
        raise RuntimeError("Every candidate of the order search failed; configure `model` explicitly.")
    row = suggested.iloc[0]
    spec = SARIMASpec(p=int(row["p"]), d=d, q=int(row["q"]), P=int(row["P"]), D=D, Q=int(row["Q"]), s=s)
    log_selected_model(spec.label, "suggest", float(row["aic"]))
    return spec, "the AIC ranking (most parsimonious within 2 units of the minimum)"


def differenced_for_spectrum(series: pd.Series, fit: FitResult, preprocessor: Preprocessor) -> pd.Series:
    """Outlier-adjust the transformed series and apply the model's differencing."""
    adjusted = outlier_adjusted_series(series, fit)
    if preprocessor.D:
        adjusted = difference(adjusted, order=preprocessor.D, lag=preprocessor.seasonal_period)
    if preprocessor.d:
        adjusted = difference(adjusted, order=preprocessor.d, lag=1)
    return adjusted


def make_plots(
    dataset: MonthlyCountDataset,
    preprocessor: Preprocessor,
    differenced: pd.Series,
    fit: FitResult,
    diagnostics: DiagnosticsReport,
    output_dir: str,
) -> Dict[str, str]:
    """Save every figure and return a mapping from title to path."""
    name = dataset.name
    label = fit.spec.label
    paths = {
        "Monthly counts": Visualizer.plot_series(name, dataset.series, output_dir=output_dir),
        "Seasonal decomposition": Visualizer.plot_decomposition(
            name, dataset.series, period=preprocessor.seasonal_period, output_dir=output_dir
        ),
    }
    lags = min(4 * preprocessor.seasonal_period, (len(differenced) - 1) // 2)
    paths["ACF and PACF of the differenced series"] = Visualizer.plot_acf_pacf(
        name, differenced, lags=lags, output_dir=output_dir
    )
    if preprocessor.selection is not None:
        paths["Box-Cox profile"] = Visualizer.plot_boxcox_profile(name, preprocessor.selection, output_dir=output_dir)
    paths["Residual diagnostics"] = Visualizer.plot_residual_diagnostics(name, label, diagnostics, output_dir=output_dir)
    paths["Normal Q-Q"] = Visualizer.plot_qq(name, label, diagnostics.qq, output_dir=output_dir)
    if diagnostics.spectral is not None:
        paths["Spectral comparison"] = Visualizer.plot_spectral(name, label, diagnostics.spectral, output_dir=output_dir)
    return paths


def run_report(config: Dict) -> str:
    """
    Run the full analysis described by a validated configuration.

    Args:
        config (Dict): Configuration returned by ``load_config``.

    Returns:
        str: Path of the written report.

    Raises:
        DomainError: If the input series is malformed or outside the transform's domain.
        FitConvergenceFailure: If the selected specification cannot be fitted.
        RuntimeError: If every candidate fails and no model is configured, or output cannot be written.
    """
    output_dir = config["report"]["output_dir"]
    dataset = MonthlyCountDataset(config["dataset"]["name"], config)
    logger.info(f"Dataset summary: {dataset.summary()}")

    preprocessor = Preprocessor(config["preprocessing"])
    differenced = preprocessor.apply_transforms(dataset.series)
    transformed = preprocessor.power_transformed

    d, D, s = preprocessor.d, preprocessor.D, preprocessor.seasonal_period
    results = search_with_cache(transformed, config["search"], d=d, D=D, s=s)
    spec, source = select_specification(config, results, d, D, s)

    fit = fit_selected_model(transformed, spec, config["outliers"], maxiter=config["search"]["maxiter"])
    log_outliers(spec.label, fit.outliers)
    logger.info(f"Final coefficients:\n{fit.coefficients()}")

    diagnostics = run_diagnostics(fit, differenced_for_spectrum(transformed, fit, preprocessor), config["diagnostics"])

    plot_paths = {}
    if config["report"]["plots"]:
        plot_paths = make_plots(dataset, preprocessor, differenced, fit, diagnostics, output_dir)

    report_path = os.path.join(output_dir, "reports", f"{dataset.name}_report.md")
    return write_report(
        report_path,
        dataset.name,
        dataset.summary(),
        results,
        fit,
        diagnostics,
        selection=preprocessor.selection,
        lam=preprocessor.lam if preprocessor.power_enabled else None,
        selection_source=source,
        plot_paths=plot_paths,
        top_candidates=config["report"]["top_candidates"],
    )


def parse_arguments() -> argparse.Namespace:
    """
    Parse command-line arguments for the report.

    Returns:
        argparse.Namespace: Parsed arguments.
    """
    parser = argparse.ArgumentParser(description="Run the seasonal ARIMA report on a monthly count series")
    parser.add_argument('--config', default='config.yaml', help="Path to the configuration file")
    return parser.parse_args()


def main() -> int:
    """
    Main function to run the report pipeline.

    Returns:
        int: Process exit code.
    """
    args = parse_arguments()
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ConfigValidationError, ValueError) as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 2

    setup_logging(os.path.join(config["report"]["output_dir"], "logs"))
    np.random.seed(42)
    try:
        report_path = run_report(config)
    except (DomainError, FitConvergenceFailure, RuntimeError) as e:
        logger.error(f"Report failed: {str(e)}", exc_info=True)
        return 1
    logger.info(f"Done. Report at {report_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
