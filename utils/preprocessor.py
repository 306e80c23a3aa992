"""Module for variance-stabilizing and differencing transforms of a monthly count series.

This module provides the Box-Cox power transform and its inverse, lag differencing with exact
re-integration, the profile-likelihood selection of the Box-Cox parameter under an
autoregressive working model, and the Preprocessor class that chains these steps from
configuration.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from schema import SchemaError
from scipy.stats import chi2
from statsmodels.tsa.ar_model import AutoReg, ar_select_order

from utils.config_utils import validate_preprocessing
from utils.exceptions import DomainError

logger = logging.getLogger(__name__)

ArrayLike = Union[pd.Series, np.ndarray]


# ---------------------------------------------------------------------------------
# Power transform
# ---------------------------------------------------------------------------------

def _check_positive(y: ArrayLike, context: str) -> np.ndarray:
    values = np.asarray(y, dtype=float)
    if values.size == 0:
        raise DomainError(f"{context} requires a non-empty series.")
    if np.isnan(values).any():
        raise DomainError(f"{context} is undefined for NaN values.")
    if (values <= 0).any():
        raise DomainError(
            f"{context} requires strictly positive values. "
            f"Found {int((values <= 0).sum())} non-positive value(s) (min={values.min()})."
        )
    return values


def box_cox(y: ArrayLike, lam: float) -> ArrayLike:
    """
    Apply the Box-Cox power transform.

    Computes ``(y**lam - 1) / lam`` for ``lam != 0`` and ``log(y)`` for ``lam == 0``.

    Args:
        y: Strictly positive series or array.
        lam: Transform parameter.

    Returns:
        Transformed values, as a Series with the same index when ``y`` is a Series.

    Raises:
        DomainError: If any value is non-positive or NaN.
    """
    values = _check_positive(y, "Box-Cox transform")
    if lam == 0:
        out = np.log(values)
    else:
        out = (np.power(values, lam) - 1.0) / lam
    if isinstance(y, pd.Series):
        return pd.Series(out, index=y.index, name=y.name)
    return out


def inverse_box_cox(z: ArrayLike, lam: float) -> ArrayLike:
    """
    Invert the Box-Cox power transform.

    Args:
        z: Values on the transformed scale.
        lam: Transform parameter used in the forward transform.

    Returns:
        Values on the original scale.

    Raises:
        DomainError: If ``lam * z + 1`` is non-positive for ``lam != 0``.
    """
    values = np.asarray(z, dtype=float)
    if lam == 0:
        out = np.exp(values)
    else:
        base = lam * values + 1.0
        if (base <= 0).any():
            raise DomainError("Inverse Box-Cox transform is undefined where lam * z + 1 <= 0.")
        out = np.power(base, 1.0 / lam)
    if isinstance(z, pd.Series):
        return pd.Series(out, index=z.index, name=z.name)
    return out


# ---------------------------------------------------------------------------------
# Differencing
# ---------------------------------------------------------------------------------

def difference_with_boundary(y: ArrayLike, order: int = 1, lag: int = 1) -> Tuple[ArrayLike, List[ArrayLike]]:
    """
    Apply ``order``-fold lag differencing and keep the values needed to invert it.

    Args:
        y: Input series or array.
        order: Number of times the difference ``y_t - y_{t-lag}`` is applied.
        lag: Differencing lag (1 for regular, s for seasonal differencing).

    Returns:
        Tuple of the differenced values (``order * lag`` shorter than ``y``) and the list of
        boundary segments, one per level, each holding the first ``lag`` values of the series
        at that level (level 0 is the input itself).

    Raises:
        ValueError: If order or lag are invalid or the series is too short.
    """
    if not isinstance(order, int) or order < 0:
        raise ValueError("order must be a non-negative integer.")
    if not isinstance(lag, int) or lag < 1:
        raise ValueError("lag must be a positive integer.")
    if order * lag >= len(y):
        raise ValueError(f"Series of length {len(y)} is too short for order={order} at lag={lag}.")

    boundaries: List[ArrayLike] = []
    current = y
    for _ in range(order):
        if isinstance(current, pd.Series):
            boundaries.append(current.iloc[:lag].copy())
            current = current.diff(periods=lag).iloc[lag:]
        else:
            current = np.asarray(current, dtype=float)
            boundaries.append(current[:lag].copy())
            current = current[lag:] - current[:-lag]
    return current, boundaries


def difference(y: ArrayLike, order: int = 1, lag: int = 1) -> ArrayLike:
    """Apply ``order``-fold differencing at ``lag``; the result is ``order * lag`` shorter."""
    diffed, _ = difference_with_boundary(y, order=order, lag=lag)
    return diffed


def _undifference_once(diffed: np.ndarray, head: np.ndarray, lag: int) -> np.ndarray:
    out = np.empty(len(head) + len(diffed), dtype=float)
    for r in range(lag):
        steps = diffed[r::lag]
        out[r::lag] = head[r] + np.concatenate(([0.0], np.cumsum(steps)))
    return out


def integrate(diffed: ArrayLike, boundaries: Sequence[ArrayLike], lag: int = 1) -> ArrayLike:
    """
    Reconstruct a series from its differences and the boundary values removed by differencing.

    Args:
        diffed: Differenced values.
        boundaries: Boundary segments as returned by ``difference_with_boundary`` (level 0 first).
        lag: Differencing lag.

    Returns:
        The reconstructed series. When ``diffed`` and the boundaries are Series, the result is a
        Series carrying the original index.

    Raises:
        ValueError: If a boundary segment does not hold exactly ``lag`` values.
    """
    current = np.asarray(diffed, dtype=float)
    for head in reversed(boundaries):
        head_values = np.asarray(head, dtype=float)
        if len(head_values) != lag:
            raise ValueError(f"Each boundary segment must hold exactly {lag} values, got {len(head_values)}.")
        current = _undifference_once(current, head_values, lag)

    if isinstance(diffed, pd.Series) and boundaries and all(isinstance(b, pd.Series) for b in boundaries):
        index = diffed.index
        for head in reversed(boundaries):
            index = head.index.append(index)
        return pd.Series(current, index=index, name=diffed.name)
    return current


# ---------------------------------------------------------------------------------
# Box-Cox parameter selection
# ---------------------------------------------------------------------------------

@dataclass
class BoxCoxSelection:
    """Outcome of the one-dimensional profile likelihood search for the Box-Cox parameter."""

    lam: float
    loglik: pd.DataFrame
    ci: Tuple[float, float]
    ar_order: int


def select_ar_order(y: ArrayLike, maxlag: Optional[int] = None) -> int:
    """
    Choose the order of the autoregressive working model by AIC on the log series.

    Args:
        y: Strictly positive series.
        maxlag: Largest order considered. Defaults to ``min(24, n // 4)``.

    Returns:
        Selected AR order (at least 1).
    """
    values = _check_positive(y, "AR order selection")
    maxlag = maxlag if maxlag is not None else max(1, min(24, len(values) // 4))
    selector = ar_select_order(np.log(values), maxlag=maxlag, ic="aic", trend="c")
    lags = selector.ar_lags
    order = int(max(lags)) if lags else 1
    logger.info(f"Selected AR({order}) working model for the Box-Cox likelihood")
    return order


def boxcox_loglik(y: ArrayLike, lam: float, ar_order: int) -> float:
    """
    Concentrated log-likelihood of the Box-Cox parameter under an AR working model.

    The transformed series is fitted with an AR(``ar_order``) model by least squares and the
    likelihood is concentrated over the innovation variance. The Jacobian of the transform is
    included so that values are comparable across ``lam``.

    Args:
        y: Strictly positive series.
        lam: Box-Cox parameter.
        ar_order: Order of the autoregressive working model.

    Returns:
        Log-likelihood value (up to an additive constant).
    """
    values = _check_positive(y, "Box-Cox likelihood")
    if ar_order < 1 or ar_order >= len(values) - 1:
        raise ValueError(f"ar_order must be in [1, {len(values) - 2}], got {ar_order}.")
    z = box_cox(values, lam)
    fit = AutoReg(z, lags=ar_order, trend="c").fit()
    resid = np.asarray(fit.resid)
    sigma2 = float(np.mean(resid ** 2))
    n_eff = len(resid)
    return -0.5 * n_eff * np.log(sigma2) + (lam - 1.0) * float(np.sum(np.log(values[ar_order:])))


def lambda_grid(min_value: float = 0.36, max_value: float = 0.65, step: float = 0.01) -> np.ndarray:
    """Build an inclusive grid of candidate Box-Cox parameters."""
    if step <= 0:
        raise ValueError("step must be positive.")
    if min_value > max_value:
        raise ValueError("min_value must not exceed max_value.")
    return np.round(np.arange(min_value, max_value + step / 2.0, step), 10)


def select_boxcox_lambda(
    y: ArrayLike,
    lambdas: Optional[Sequence[float]] = None,
    ar_order: Optional[int] = None,
    confidence: float = 0.95,
) -> BoxCoxSelection:
    """
    Select the Box-Cox parameter maximizing the concentrated log-likelihood over a grid.

    Args:
        y: Strictly positive series.
        lambdas: Candidate parameters. Defaults to 0.36..0.65 in steps of 0.01.
        ar_order: Order of the AR working model. Chosen by AIC when None.
        confidence: Level of the likelihood-ratio interval reported for the parameter.

    Returns:
        BoxCoxSelection with the maximizer, the per-candidate log-likelihood table and the interval.

    Raises:
        DomainError: If the series contains non-positive values.
    """
    values = _check_positive(y, "Box-Cox parameter selection")
    grid = np.asarray(lambdas if lambdas is not None else lambda_grid(), dtype=float)
    if grid.size == 0:
        raise ValueError("lambdas cannot be empty.")
    order = ar_order if ar_order is not None else select_ar_order(values)

    loglik = np.array([boxcox_loglik(values, lam, order) for lam in grid])
    table = pd.DataFrame({"lambda": grid, "loglik": loglik})
    best = int(np.argmax(loglik))

    cutoff = loglik[best] - chi2.ppf(confidence, df=1) / 2.0
    inside = grid[loglik >= cutoff]
    selection = BoxCoxSelection(
        lam=float(grid[best]),
        loglik=table,
        ci=(float(inside.min()), float(inside.max())),
        ar_order=order,
    )
    logger.info(
        f"Box-Cox lambda={selection.lam:.2f} (loglik={loglik[best]:.3f}, "
        f"{int(confidence * 100)}% interval [{selection.ci[0]:.2f}, {selection.ci[1]:.2f}])"
    )
    return selection


# ---------------------------------------------------------------------------------
# Preprocessor
# ---------------------------------------------------------------------------------

class Preprocessor:
    """
    Chains the power transform with seasonal and regular differencing.

    The forward pipeline is ``diff^d(seasonal_diff^D(box_cox(y)))``. The boundary values removed
    by each differencing stage are stored so that a differenced series can be integrated back
    and inverse-transformed exactly.

    Attributes:
        config (Dict): Preprocessing configuration with ``power_transform`` and ``differencing``.
        lam (Optional[float]): Box-Cox parameter in use, set from config or selected in ``fit``.
        selection (Optional[BoxCoxSelection]): Profile likelihood result when the parameter was selected.
        power_transformed (Optional[pd.Series]): Series after the power transform only.
    """

    def __init__(self, config: Dict):
        """
        Initializes the Preprocessor with a given configuration.

        Args:
            config (Dict): Preprocessing section of the report configuration.

        Raises:
            ValueError: If the configuration is invalid.
        """
        try:
            validate_preprocessing(config)
        except SchemaError as e:
            logger.error(f"Configuration validation failed: {str(e)}")
            raise ValueError(f"Configuration validation failed: {str(e)}")

        power = config.get("power_transform", {})
        diff = config.get("differencing", {})
        self.config = config
        self.power_enabled = power.get("enabled", True)
        self.lam: Optional[float] = power.get("lambda")
        grid = power.get("lambda_grid", {"min": 0.36, "max": 0.65, "step": 0.01})
        self.lambdas = lambda_grid(grid["min"], grid["max"], grid.get("step", 0.01))
        self.ar_order: Optional[int] = power.get("ar_order")

        self.diff_enabled = diff.get("enabled", True)
        self.d = diff.get("order", 1) if self.diff_enabled else 0
        self.D = diff.get("seasonal_order", 1) if self.diff_enabled else 0
        self.seasonal_period = diff.get("seasonal_period", 12)

        self.selection: Optional[BoxCoxSelection] = None
        self.power_transformed: Optional[pd.Series] = None
        self._seasonal_boundaries: List[ArrayLike] = []
        self._regular_boundaries: List[ArrayLike] = []
        logger.info(
            f"Initialized Preprocessor: power_transform={self.power_enabled}, "
            f"d={self.d}, D={self.D}, seasonal_period={self.seasonal_period}"
        )

    @property
    def total_lag(self) -> int:
        """Number of observations consumed by differencing."""
        return self.d + self.D * self.seasonal_period

    def fit(self, series: pd.Series) -> "Preprocessor":
        """
        Select the Box-Cox parameter from the series when it is not fixed in the configuration.

        Args:
            series: Raw count series.

        Returns:
            The preprocessor itself.
        """
        if self.power_enabled and self.lam is None:
            self.selection = select_boxcox_lambda(series, self.lambdas, ar_order=self.ar_order)
            self.lam = self.selection.lam
        return self

    def transform_power(self, series: pd.Series) -> pd.Series:
        """Apply only the power transform (identity when disabled)."""
        if not self.power_enabled:
            return series.astype(float)
        if self.lam is None:
            raise RuntimeError("Box-Cox parameter is not set. Call `fit` first or configure `lambda`.")
        return box_cox(series, self.lam)

    def apply_transforms(self, series: pd.Series) -> pd.Series:
        """
        Apply the full forward pipeline and remember the differencing boundaries.

        Args:
            series: Raw count series.

        Returns:
            The power-transformed and differenced series, ``total_lag`` shorter than the input.

        Raises:
            DomainError: If the power transform is applied to non-positive values.
        """
        if self.power_enabled and self.lam is None:
            self.fit(series)
        validate_preprocessing(self.config, series)

        transformed = self.transform_power(series)
        self.power_transformed = transformed

        seasonal_diffed, self._seasonal_boundaries = difference_with_boundary(
            transformed, order=self.D, lag=self.seasonal_period
        ) if self.D > 0 else (transformed, [])
        diffed, self._regular_boundaries = difference_with_boundary(
            seasonal_diffed, order=self.d, lag=1
        ) if self.d > 0 else (seasonal_diffed, [])

        logger.info(f"Transformed series from {len(series)} to {len(diffed)} observations")
        return diffed

    def inverse_transforms(self, diffed: pd.Series) -> pd.Series:
        """
        Integrate a differenced series with the stored boundaries and undo the power transform.

        Args:
            diffed: Series on the differenced scale, aligned with the output of ``apply_transforms``.

        Returns:
            Series on the original count scale.

        Raises:
            RuntimeError: If ``apply_transforms`` has not been called.
        """
        if self.power_transformed is None:
            raise RuntimeError("Preprocessor has not been fitted. Call `apply_transforms` first.")
        series = diffed
        if self._regular_boundaries:
            series = integrate(series, self._regular_boundaries, lag=1)
        if self._seasonal_boundaries:
            series = integrate(series, self._seasonal_boundaries, lag=self.seasonal_period)
        if self.power_enabled:
            series = inverse_box_cox(series, self.lam)
        return series
