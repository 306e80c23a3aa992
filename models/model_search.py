"""Module for the seasonal ARIMA order search.

This module enumerates the grid of nonseasonal and seasonal AR/MA orders, fits every candidate
with fixed differencing orders, and collects the outcomes into a SearchResults object that can be
ranked and filtered by AIC and parameter count. A failed candidate is recorded as a value and
never interrupts the search. Results can be cached to CSV to avoid repeating the search.
"""

import concurrent.futures
import contextlib
import logging
import os
import signal
import threading
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from models.base_arima import ARIMABaseModel, FitResult, SARIMASpec
from utils.exceptions import FitConvergenceFailure, NumericalInstability
from utils.hyperopt.grid_params import generate_grid_params
from utils.hyperopt.grid_params import grid_size as count_grid_cells
from utils.logging_utils import log_fit_failure, log_search_start, log_search_summary

logger = logging.getLogger(__name__)

ORDER_COLUMNS = ["p", "P", "q", "Q"]
CACHE_COLUMNS = ORDER_COLUMNS + ["aic"]


@dataclass
class CandidateOutcome:
    """Outcome of one grid cell: either a fit or a typed failure."""

    spec: SARIMASpec
    fit: Optional[FitResult] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fit is not None


class _FitTimeout(BaseException):
    """Raised by the interval timer inside a fit; not an Exception so library code cannot absorb it."""


def _raise_fit_timeout(signum, frame):
    raise _FitTimeout()


def timeout_supported() -> bool:
    """Whether a per-fit time limit can be enforced in the current thread."""
    return hasattr(signal, "setitimer") and threading.current_thread() is threading.main_thread()


@contextlib.contextmanager
def _time_limit(seconds: Optional[float]):
    """Interrupt the enclosed block after ``seconds`` of wall-clock time."""
    if seconds is None or not timeout_supported():
        yield
        return
    previous = signal.signal(signal.SIGALRM, _raise_fit_timeout)
    try:
        signal.setitimer(signal.ITIMER_REAL, seconds)
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


def _fit_candidate(
    series: pd.Series,
    params: Dict[str, int],
    d: int,
    D: int,
    s: int,
    maxiter: int,
    keep_results: bool,
    timeout: Optional[float] = None,
) -> CandidateOutcome:
    """
    Fit one grid combination, converting any fit failure into a failed outcome.

    The time limit starts when the fit starts, in whichever process runs it.
    """
    spec = SARIMASpec.from_params(params, d=d, D=D, s=s)
    try:
        with warnings.catch_warnings(), _time_limit(timeout):
            warnings.simplefilter("ignore", NumericalInstability)
            fit = ARIMABaseModel(spec, maxiter=maxiter).fit(series)
    except _FitTimeout:
        return CandidateOutcome(spec=spec, reason="timeout", message=f"No result within {timeout}s")
    except FitConvergenceFailure as e:
        return CandidateOutcome(spec=spec, reason=e.reason, message=str(e))
    except ValueError as e:
        return CandidateOutcome(spec=spec, reason="invalid", message=str(e))
    except Exception as e:
        logger.error(f"Unexpected error fitting {spec.label}: {str(e)}", exc_info=True)
        return CandidateOutcome(spec=spec, reason="error", message=f"{type(e).__name__}: {e}")
    if not keep_results:
        fit.results = None
    return CandidateOutcome(spec=spec, fit=fit)


class SearchResults:
    """Queryable set of grid-search outcomes ranked by AIC."""

    def __init__(
        self,
        outcomes: Optional[List[CandidateOutcome]] = None,
        table: Optional[pd.DataFrame] = None,
        grid_size: Optional[int] = None,
    ) -> None:
        """
        Initialize from fitted outcomes or from a cached table.

        Args:
            outcomes: Outcomes of a search run.
            table: Table with p, P, q, Q and aic columns, used when loading a cache.
            grid_size: Number of combinations that were searched. For a cached table, candidates
                of the grid missing from the table are counted as failed.
        """
        self.outcomes = outcomes or []
        self.cached = table is not None and not self.outcomes
        if table is None:
            rows = [o.fit.summary_row() for o in self.outcomes if o.ok]
            table = pd.DataFrame(rows, columns=ORDER_COLUMNS + ["aic", "n_params"])
        elif "n_params" not in table.columns:
            table = table.assign(n_params=table[ORDER_COLUMNS].sum(axis=1))
        self._table = (
            table.astype({c: int for c in ORDER_COLUMNS + ["n_params"]})
            .sort_values(["aic", "n_params"], kind="mergesort")
            .reset_index(drop=True)
        )
        if grid_size is not None and grid_size < len(self._table):
            logger.warning(
                f"Table holds {len(self._table)} candidates but the grid has only {grid_size}; "
                f"using the table size"
            )
            grid_size = len(self._table)
        self.grid_size = grid_size if grid_size is not None else (len(self.outcomes) or len(self._table))

    @property
    def n_success(self) -> int:
        return len(self._table)

    @property
    def n_failed(self) -> int:
        """Failed candidates; for cached results, grid cells absent from the cache."""
        if self.cached:
            return self.grid_size - self.n_success
        return sum(1 for o in self.outcomes if not o.ok)

    def table(self) -> pd.DataFrame:
        """Successful fits ranked ascending by AIC, with the AIC difference to the best fit."""
        table = self._table.copy()
        if not table.empty:
            table["delta_aic"] = table["aic"] - table["aic"].min()
        else:
            table["delta_aic"] = pd.Series(dtype=float)
        return table

    def ranked(self, top: Optional[int] = None) -> pd.DataFrame:
        """Return the ``top`` lowest-AIC candidates (all when None)."""
        table = self.table()
        return table if top is None else table.head(top)

    def filter(
        self,
        max_params: Optional[int] = None,
        aic_within: Optional[float] = None,
        **orders: Union[int, List[int]],
    ) -> pd.DataFrame:
        """
        Filter the ranked table.

        Args:
            max_params: Keep candidates with at most this many AR/MA coefficients.
            aic_within: Keep candidates whose AIC is within this distance of the minimum.
            **orders: Fixed values (or lists of values) for any of p, P, q, Q.

        Returns:
            Filtered table, still ranked by AIC.

        Raises:
            ValueError: If an unknown order name is given.
        """
        table = self.table()
        if max_params is not None:
            table = table[table["n_params"] <= max_params]
        if aic_within is not None:
            table = table[table["delta_aic"] <= aic_within]
        for name, value in orders.items():
            if name not in ORDER_COLUMNS:
                raise ValueError(f"Unknown order '{name}'. Expected one of {ORDER_COLUMNS}.")
            values = value if isinstance(value, (list, tuple, set)) else [value]
            table = table[table[name].isin(values)]
        return table.reset_index(drop=True)

    def suggest(self, aic_tolerance: float = 2.0) -> pd.DataFrame:
        """
        Low-AIC candidates re-ordered by parameter count.

        This is an aid for the analyst's choice between comparable fits, not an automatic
        selection: candidates within ``aic_tolerance`` of the minimum AIC are listed with the
        most parsimonious first.
        """
        if aic_tolerance < 0:
            raise ValueError("aic_tolerance must be non-negative.")
        near = self.filter(aic_within=aic_tolerance)
        return near.sort_values(["n_params", "aic"], kind="mergesort").reset_index(drop=True)

    def failures(self) -> pd.DataFrame:
        """Failed candidates with their failure reason and message."""
        rows = [
            {"p": o.spec.p, "P": o.spec.P, "q": o.spec.q, "Q": o.spec.Q, "reason": o.reason, "message": o.message}
            for o in self.outcomes if not o.ok
        ]
        return pd.DataFrame(rows, columns=ORDER_COLUMNS + ["reason", "message"])

    def get_fit(self, p: int, P: int, q: int, Q: int) -> Optional[FitResult]:
        """Return the stored fit of a combination, if the search produced one."""
        for o in self.outcomes:
            if o.ok and (o.spec.p, o.spec.P, o.spec.q, o.spec.Q) == (p, P, q, Q):
                return o.fit
        return None


class SARIMAGridSearch:
    """Fits every combination of a seasonal ARIMA order grid."""

    def __init__(
        self,
        param_space: Dict[str, Any],
        d: int = 1,
        D: int = 1,
        s: int = 12,
        n_jobs: int = 1,
        timeout: Optional[float] = None,
        maxiter: int = 200,
        keep_results: bool = False,
    ) -> None:
        """
        Initialize the search.

        Args:
            param_space: Ranges or lists for p, q, P and Q.
            d: Nonseasonal differencing order.
            D: Seasonal differencing order.
            s: Seasonal period.
            n_jobs: Number of worker processes; 1 runs sequentially, -1 uses all cores.
            timeout: Wall-clock seconds allowed for each fit, counted from the start of that fit.
                A fit over the limit is interrupted and recorded with reason "timeout". Enforced
                with an interval timer, so it needs a POSIX platform and, in sequential mode, the
                main thread; elsewhere it is ignored with a warning. A fit blocked inside one long
                native call is interrupted only when control returns to Python.
            maxiter: Maximum optimizer iterations per fit.
            keep_results: Keep the statsmodels results object on each fit.

        Raises:
            ValueError: If the parameter space, n_jobs or timeout are invalid.
        """
        if n_jobs == 0:
            raise ValueError("n_jobs cannot be 0.")
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive.")
        unknown = set(param_space) - set(ORDER_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown search parameters: {sorted(unknown)}. Expected {ORDER_COLUMNS}.")
        self.candidates = generate_grid_params(param_space)
        self.d, self.D, self.s = d, D, s
        self.n_jobs = n_jobs
        self.timeout = timeout
        enforceable = timeout_supported() if n_jobs == 1 else hasattr(signal, "setitimer")
        if timeout is not None and not enforceable:
            logger.warning(f"Per-fit timeout of {timeout}s cannot be enforced here; fits run unbounded")
        self.maxiter = maxiter
        self.keep_results = keep_results

    @property
    def grid_size(self) -> int:
        return len(self.candidates)

    def _run_sequential(self, series: pd.Series) -> List[CandidateOutcome]:
        outcomes = []
        for params in self.candidates:
            outcome = _fit_candidate(
                series, params, self.d, self.D, self.s, self.maxiter, self.keep_results, self.timeout
            )
            if not outcome.ok:
                log_fit_failure(outcome.spec.label, params, outcome.reason, outcome.message)
            outcomes.append(outcome)
        return outcomes

    def _run_parallel(self, series: pd.Series) -> List[CandidateOutcome]:
        max_workers = os.cpu_count() if self.n_jobs < 0 else self.n_jobs
        outcomes: List[Optional[CandidateOutcome]] = [None] * self.grid_size
        with concurrent.futures.ProcessPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(
                    _fit_candidate, series, params, self.d, self.D, self.s, self.maxiter, self.keep_results,
                    self.timeout,
                ): i
                for i, params in enumerate(self.candidates)
            }
            for future in concurrent.futures.as_completed(futures):
                i = futures[future]
                params = self.candidates[i]
                try:
                    outcome = future.result()
                except Exception as e:
                    spec = SARIMASpec.from_params(params, d=self.d, D=self.D, s=self.s)
                    logger.error(f"Worker failed for {spec.label}: {str(e)}", exc_info=True)
                    outcome = CandidateOutcome(spec=spec, reason="error", message=str(e))
                if not outcome.ok:
                    log_fit_failure(outcome.spec.label, params, outcome.reason, outcome.message)
                outcomes[i] = outcome
        return outcomes

    def run(self, series: pd.Series) -> SearchResults:
        """
        Fit every combination of the grid to ``series``.

        Args:
            series: Power-transformed, undifferenced series.

        Returns:
            SearchResults with one outcome per grid combination.
        """
        log_search_start(self.grid_size, self.d, self.D, self.s, self.n_jobs)
        if self.n_jobs == 1:
            outcomes = self._run_sequential(series)
        else:
            outcomes = self._run_parallel(series)
        results = SearchResults(outcomes=outcomes, grid_size=self.grid_size)
        best = results.ranked(top=1)
        best_label = None
        if not best.empty:
            row = best.iloc[0]
            best_label = SARIMASpec(
                p=int(row["p"]), d=self.d, q=int(row["q"]), P=int(row["P"]), D=self.D, Q=int(row["Q"]), s=self.s
            ).label
        log_search_summary(self.grid_size, results.n_success, results.n_failed, best_label,
                           float(best["aic"].iloc[0]) if not best.empty else None)
        return results


def save_search_cache(results: SearchResults, path: str) -> None:
    """
    Write the successful fits to a CSV cache with columns p, P, q, Q, aic.

    Raises:
        RuntimeError: If the file cannot be written.
    """
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        results.table()[CACHE_COLUMNS].to_csv(path, index=False)
        logger.info(f"Saved {results.n_success} grid-search results to {path}")
    except OSError as e:
        logger.error(f"Failed to save grid-search cache: {str(e)}", exc_info=True)
        raise RuntimeError(f"Failed to save grid-search cache: {str(e)}")


def load_search_cache(path: str, grid_size: Optional[int] = None) -> SearchResults:
    """
    Load a CSV cache written by ``save_search_cache``.

    Only successful fits are cached, so ``grid_size`` (the size of the searched grid) is needed
    to count the failed candidates; without it the cache is assumed to cover the whole grid.

    Raises:
        FileNotFoundError: If the cache does not exist.
        ValueError: If required columns are missing or AIC values are not finite.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Grid-search cache not found: {path}")
    table = pd.read_csv(path)
    missing = [c for c in CACHE_COLUMNS if c not in table.columns]
    if missing:
        raise ValueError(f"Grid-search cache {path} is missing columns: {missing}")
    table = table[CACHE_COLUMNS]
    if not np.isfinite(table["aic"].to_numpy(dtype=float)).all():
        raise ValueError(f"Grid-search cache {path} contains non-finite AIC values")
    logger.info(f"Loaded {len(table)} grid-search results from {path}")
    return SearchResults(table=table, grid_size=grid_size)


def search_with_cache(
    series: pd.Series,
    search_config: Dict[str, Any],
    d: int = 1,
    D: int = 1,
    s: int = 12,
) -> SearchResults:
    """
    Run the grid search, or load it from the configured cache when present.

    Args:
        series: Power-transformed series.
        search_config: The ``search`` configuration section.
        d: Nonseasonal differencing order.
        D: Seasonal differencing order.
        s: Seasonal period.

    Returns:
        SearchResults from the cache or from a fresh run.
    """
    cache_path = search_config.get("cache_path")
    if cache_path and os.path.exists(cache_path):
        return load_search_cache(cache_path, grid_size=count_grid_cells(search_config["params"]))

    search = SARIMAGridSearch(
        search_config["params"],
        d=d,
        D=D,
        s=s,
        n_jobs=search_config.get("n_jobs", 1),
        timeout=search_config.get("timeout"),
        maxiter=search_config.get("maxiter", 200),
    )
    results = search.run(series)
    if cache_path:
        save_search_cache(results, cache_path)
    return results
