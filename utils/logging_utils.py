"""Module for logging model-search and fitting events.

This module provides functions to log the start and summary of the order grid search, failed
candidate fits, the specification chosen for the final fit and the innovative outliers found
for it, ensuring consistent messages across the pipeline.
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def log_search_start(grid_size: int, d: int, D: int, s: int, n_jobs: int = 1) -> None:
    """
    Log the start of the order grid search.

    Args:
        grid_size: Number of candidate specifications.
        d: Nonseasonal differencing order.
        D: Seasonal differencing order.
        s: Seasonal period.
        n_jobs: Number of worker processes.

    Raises:
        ValueError: If grid_size is not a positive integer.
    """
    if not isinstance(grid_size, int) or grid_size < 1:
        raise ValueError("grid_size must be a positive integer.")

    mode = "sequentially" if n_jobs == 1 else f"with n_jobs={n_jobs}"
    logger.info(f"[search] Fitting {grid_size} candidates with d={d}, D={D}, s={s} {mode}")


def log_fit_failure(label: str, params: Dict, reason: Optional[str], message: Optional[str]) -> None:
    """
    Log a candidate whose fit failed.

    Args:
        label: Specification label, e.g. 'SARIMA(1,1,0)x(0,1,0)_12'.
        params: Grid combination of the candidate.
        reason: Failure category (e.g., 'convergence', 'timeout').
        message: Failure message.

    Raises:
        ValueError: If label is empty or params is not a dictionary.
    """
    if not label:
        raise ValueError("label cannot be empty.")
    if not isinstance(params, dict):
        raise ValueError("params must be a dictionary.")

    logger.warning(f"[search] {label} failed ({reason or 'unknown'}) with params={params}: {message}")


def log_search_summary(
    grid_size: int, n_success: int, n_failed: int, best_label: Optional[str] = None, best_aic: Optional[float] = None
) -> None:
    """
    Log the outcome of the grid search.

    Args:
        grid_size: Number of candidate specifications.
        n_success: Number of successful fits.
        n_failed: Number of failed fits.
        best_label: Label of the lowest-AIC candidate, if any.
        best_aic: Its AIC.

    Raises:
        ValueError: If the counts are negative or exceed the grid size.
    """
    if n_success < 0 or n_failed < 0:
        raise ValueError("Counts must be non-negative.")
    if n_success + n_failed > grid_size:
        raise ValueError("n_success + n_failed cannot exceed grid_size.")

    logger.info(f"[search] {n_success}/{grid_size} candidates fitted, {n_failed} failed")
    if n_failed == grid_size:
        logger.warning("[search] Every candidate failed to fit")
    if best_label is not None and best_aic is not None:
        logger.info(f"[search] Lowest AIC: {best_label} with AIC={float(best_aic):.3f}")


def log_selected_model(label: str, source: str, aic: Optional[float] = None) -> None:
    """
    Log the specification chosen for the final fit.

    Args:
        label: Specification label.
        source: Where the choice came from ('config' or 'suggest').
        aic: AIC from the search, if known.

    Raises:
        ValueError: If label or source is empty.
    """
    if not label:
        raise ValueError("label cannot be empty.")
    if not source:
        raise ValueError("source cannot be empty.")

    aic_text = f", search AIC={float(aic):.3f}" if aic is not None else ""
    logger.info(f"[model] Selected {label} (from {source}{aic_text})")


def log_outliers(label: str, outliers: List[Any]) -> None:
    """
    Log the innovative outliers included in the final fit.

    Args:
        label: Specification label.
        outliers: OutlierTerm objects.

    Raises:
        ValueError: If label is empty or outliers is not a list.
    """
    if not label:
        raise ValueError("label cannot be empty.")
    if not isinstance(outliers, list):
        raise ValueError("outliers must be a list.")

    if not outliers:
        logger.info(f"[model] {label}: no innovative outliers")
        return
    details = ", ".join(f"{o.timestamp:%Y-%m} (stat={o.statistic:.2f})" for o in outliers)
    logger.info(f"[model] {label}: {len(outliers)} innovative outlier(s) at {details}")
