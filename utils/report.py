"""Module for rendering the analysis as a Markdown report.

The report collects the dataset summary, the Box-Cox choice, the ranked AIC table of the order
search, the coefficient table of the final fit, the innovative outliers and the diagnostics
summaries, and links the saved plots.
"""

import logging
import os
from typing import Dict, Optional

import numpy as np
import pandas as pd

from models.base_arima import FitResult
from models.model_search import SearchResults
from utils.diagnostics import DiagnosticsReport
from utils.preprocessor import BoxCoxSelection

logger = logging.getLogger(__name__)


def _format_value(value) -> str:
    if isinstance(value, (bool, np.bool_)):
        return "yes" if value else "no"
    if isinstance(value, (float, np.floating)):
        return "NaN" if np.isnan(value) else f"{value:.4f}"
    if isinstance(value, pd.Timestamp):
        return f"{value:%Y-%m}"
    return str(value)


def markdown_table(df: pd.DataFrame, index: bool = False) -> str:
    """Render a DataFrame as a GitHub-flavoured Markdown table."""
    if index:
        df = df.reset_index()
    header = "| " + " | ".join(str(c) for c in df.columns) + " |"
    divider = "|" + "|".join("---" for _ in df.columns) + "|"
    rows = ["| " + " | ".join(_format_value(v) for v in row) + " |" for row in df.itertuples(index=False)]
    return "\n".join([header, divider] + rows)


def _coefficient_lines(fit: FitResult) -> str:
    table = fit.coefficients()
    lines = []
    for name, row in table.iterrows():
        se = "undefined" if np.isnan(row["std_error"]) else f"{row['std_error']:.4f}"
        lines.append(f"| {name} | {row['estimate']:.4f} | {se} |")
    return "\n".join(["| parameter | estimate | s.e. |", "|---|---|---|"] + lines)


def write_report(
    output_path: str,
    dataset_name: str,
    dataset_summary: Dict,
    search_results: SearchResults,
    fit: FitResult,
    diagnostics: DiagnosticsReport,
    selection: Optional[BoxCoxSelection] = None,
    lam: Optional[float] = None,
    selection_source: str = "config",
    plot_paths: Optional[Dict[str, str]] = None,
    top_candidates: int = 10,
) -> str:
    """
    Write the Markdown report.

    Args:
        output_path: Path of the report file.
        dataset_name: Name of the dataset.
        dataset_summary: Output of ``MonthlyCountDataset.summary()``.
        search_results: Results of the order search.
        fit: Final fitted model.
        diagnostics: Diagnostics of the final fit.
        selection: Box-Cox profile likelihood result, when lambda was selected.
        lam: Box-Cox parameter in use; None when no power transform was applied.
        selection_source: Where the final specification came from.
        plot_paths: Mapping from plot title to saved file path.
        top_candidates: Number of ranked candidates to list.

    Returns:
        The path of the written report.

    Raises:
        RuntimeError: If the report cannot be written.
    """
    sections = [f"# Seasonal ARIMA analysis: {dataset_name}", ""]

    sections += ["## Data", ""]
    sections += [f"- **{key}**: {_format_value(value)}" for key, value in dataset_summary.items()]
    sections.append("")

    sections += ["## Power transform", ""]
    if lam is None:
        sections.append("No power transform was applied.")
    elif selection is not None:
        sections.append(
            f"Box-Cox lambda = {selection.lam:.2f} (approximate 95% interval "
            f"[{selection.ci[0]:.2f}, {selection.ci[1]:.2f}]), selected by profile likelihood under an "
            f"AR({selection.ar_order}) working model."
        )
    else:
        sections.append(f"Box-Cox lambda = {lam:.2f}, fixed in the configuration.")
    sections.append("")

    sections += ["## Order search", ""]
    sections.append(
        f"{search_results.n_success} of {search_results.grid_size} candidate specifications were fitted; "
        f"{search_results.n_failed} failed."
    )
    sections.append("")
    ranked = search_results.ranked(top=top_candidates)
    if not ranked.empty:
        sections += [markdown_table(ranked), ""]
        suggested = search_results.suggest().head(top_candidates)
        sections += ["Candidates within 2 AIC units of the minimum, most parsimonious first:", ""]
        sections += [markdown_table(suggested), ""]
    if search_results.cached:
        sections.append("Results were loaded from the cache, which stores successful fits only; failure details are not cached.")
        sections.append("")
    failures = search_results.failures()
    if not failures.empty:
        counts = failures["reason"].value_counts()
        sections.append("Failures by reason: " + ", ".join(f"{reason} ({n})" for reason, n in counts.items()))
        sections.append("")

    sections += [f"## Final model: {fit.spec.label}", ""]
    sections.append(f"Specification chosen from {selection_source}. Log-likelihood {fit.llf:.3f}, "
                    f"AIC {fit.aic:.3f} with k = {fit.n_params} free parameters, {fit.nobs} observations.")
    sections += ["", _coefficient_lines(fit), ""]
    if fit.outliers:
        sections += ["Innovative outliers included as impulse-response covariates:", ""]
        sections += [f"- {o.timestamp:%Y-%m} (standardized residual {o.statistic:.2f})" for o in fit.outliers]
    else:
        sections.append("No innovative outliers were included.")
    if fit.warnings:
        sections += ["", "Fit warnings:", ""]
        sections += [f"- {w}" for w in fit.warnings]
    sections.append("")

    summary = diagnostics.summary()
    sections += ["## Diagnostics", ""]
    flagged = summary["ljung_box_flagged"]
    sections.append(
        f"- Ljung-Box (lags 1-{summary['ljung_box_lags']}): "
        + (f"p < {diagnostics.alpha} at lags {flagged}" if flagged else f"no lag below {diagnostics.alpha}")
        + f"; smallest p-value {summary['ljung_box_min_pvalue']:.4f}."
    )
    sections.append(
        f"- Normal Q-Q: correlation {summary['qq_correlation']:.4f}; "
        f"Shapiro-Wilk p-value {summary['shapiro_pvalue']:.4f} (informational)."
    )
    if diagnostics.spectral is not None:
        spectral = diagnostics.spectral
        sections.append(
            f"- Spectrum: fitted density inside the {spectral.periodogram.confidence:.0%} band of the "
            f"Daniell-smoothed periodogram (m={spectral.periodogram.half_width}) at {spectral.coverage:.1%} "
            f"of frequencies" + (" (everywhere)." if spectral.all_within else ".")
        )
    else:
        sections.append("- Spectrum: comparison not available.")
    sections.append("")

    if plot_paths:
        report_dir = os.path.dirname(os.path.abspath(output_path))
        sections += ["## Plots", ""]
        for title, path in plot_paths.items():
            rel = os.path.relpath(os.path.abspath(path), report_dir)
            sections.append(f"![{title}]({rel})")
        sections.append("")

    try:
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, "w") as f:
            f.write("\n".join(sections))
    except OSError as e:
        logger.error(f"Failed to write report: {str(e)}", exc_info=True)
        raise RuntimeError(f"Failed to write report: {str(e)}")
    logger.info(f"Report written to {output_path}")
    return output_path
