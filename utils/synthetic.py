"""Module for simulating seasonal ARIMA series.

The simulated series are used by tests and demos: ``simulate_sarima`` returns a Gaussian
seasonal ARIMA path on the modeling scale, and ``simulate_monthly_counts`` maps such a path back
through an inverse Box-Cox transform into a positive monthly count table shaped like the input
of MonthlyCountDataset.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy.signal import lfilter

from models.sarima import lag_polynomial
from utils.preprocessor import box_cox, inverse_box_cox

logger = logging.getLogger(__name__)


def simulate_sarima(
    n: int,
    ar: Sequence[float] = (),
    ma: Sequence[float] = (),
    seasonal_ar: Sequence[float] = (),
    seasonal_ma: Sequence[float] = (),
    d: int = 1,
    D: int = 1,
    s: int = 12,
    sigma: float = 1.0,
    start: str = "1970-01-01",
    burn_in: int = 120,
    seed: Optional[int] = None,
) -> pd.Series:
    """
    Simulate a multiplicative seasonal ARIMA(p, d, q)x(P, D, Q)_s path.

    Args:
        n: Number of monthly observations to return.
        ar: Nonseasonal AR coefficients (statsmodels sign convention).
        ma: Nonseasonal MA coefficients.
        seasonal_ar: Seasonal AR coefficients.
        seasonal_ma: Seasonal MA coefficients.
        d: Nonseasonal differencing order.
        D: Seasonal differencing order.
        s: Seasonal period.
        sigma: Innovation standard deviation.
        start: First month of the returned index.
        burn_in: Number of leading values discarded.
        seed: Seed of the random generator.

    Returns:
        Series of length ``n`` indexed by month start.

    Raises:
        ValueError: If n, sigma or burn_in are invalid.
    """
    if n < 1:
        raise ValueError("n must be positive.")
    if sigma <= 0:
        raise ValueError("sigma must be positive.")
    if burn_in < 0:
        raise ValueError("burn_in must be non-negative.")

    ar_poly = np.convolve(lag_polynomial(ar), lag_polynomial(seasonal_ar, s))
    ma_poly = np.convolve(lag_polynomial(ma, sign=1.0), lag_polynomial(seasonal_ma, s, sign=1.0))
    for _ in range(d):
        ar_poly = np.convolve(ar_poly, [1.0, -1.0])
    for _ in range(D):
        ar_poly = np.convolve(ar_poly, lag_polynomial([1.0], s))

    rng = np.random.default_rng(seed)
    shocks = rng.normal(0.0, sigma, n + burn_in)
    path = lfilter(ma_poly, ar_poly, shocks)[burn_in:]
    index = pd.date_range(start=start, periods=n, freq="MS")
    logger.debug(f"Simulated {n} observations with AR polynomial of degree {len(ar_poly) - 1}")
    return pd.Series(path - path[0], index=index, name="value")


def simulate_monthly_counts(
    n: int = 576,
    level: float = 400.0,
    lam: float = 0.5,
    scale: float = 0.1,
    seasonal_amplitude: float = 2.0,
    start: str = "1970-01-01",
    seed: Optional[int] = None,
    **sarima_kwargs,
) -> pd.DataFrame:
    """
    Simulate a positive monthly count table with year, month and count columns.

    A seasonal ARIMA path scaled by ``scale`` and a sinusoidal annual profile of height
    ``seasonal_amplitude`` are added to ``box_cox(level, lam)`` and mapped back with the inverse
    transform; the result is rounded and floored at one.

    Returns:
        DataFrame with integer year, month and count columns.
    """
    path = simulate_sarima(n, start=start, seed=seed, **sarima_kwargs)
    base = float(box_cox(np.array([level]), lam)[0])
    months = np.arange(n)
    z = base + seasonal_amplitude * np.sin(2 * np.pi * months / 12.0) + scale * path.to_numpy()
    if lam != 0:
        z = np.maximum(z, (1e-6 - 1.0) / lam) if lam > 0 else np.minimum(z, (1e-6 - 1.0) / lam)
    counts = np.maximum(np.rint(inverse_box_cox(z, lam)), 1).astype(int)
    return pd.DataFrame({
        "year": path.index.year,
        "month": path.index.month,
        "count": counts,
    })
