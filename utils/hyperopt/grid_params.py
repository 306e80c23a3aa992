"""Module for generating order combinations for the seasonal ARIMA grid search.

This module expands a parameter space of nonseasonal and seasonal AR/MA orders into the full
Cartesian product of candidate specifications.
"""

import logging
import itertools
from typing import Dict, List, Union

from utils.hyperopt.params_utils import _validate_param_space

logger = logging.getLogger(__name__)


def grid_size(param_space: Dict[str, Union[List, Dict]]) -> int:
    """Return the number of combinations spanned by ``param_space``."""
    size = 1
    for _, values in _validate_param_space(param_space):
        size *= len(values)
    return size


def generate_grid_params(param_space: Dict[str, Union[List, Dict]]) -> List[Dict[str, int]]:
    """
    Generate all order combinations for grid search.

    Args:
        param_space: Dictionary with parameter names as keys and either:
            - Lists of orders (e.g., [0, 1, 2]).
            - Dictionaries with inclusive 'min', 'max' and optional 'step'.

    Returns:
        List of dictionaries, one per combination, in lexicographic order of the parameters.

    Raises:
        ValueError: If param_space is empty or parameter ranges are invalid.
    """
    if not param_space:
        logger.error("param_space cannot be empty")
        raise ValueError("param_space cannot be empty")

    logger.debug(f"Generating grid parameters for param_space: {param_space}")

    try:
        param_pairs = _validate_param_space(param_space)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to validate param_space: {str(e)}")
        raise ValueError(f"Invalid param_space: {str(e)}")

    keys = [key for key, _ in param_pairs]
    value_lists = [values for _, values in param_pairs]

    all_combinations = list(itertools.product(*value_lists))
    logger.info(f"Generated {len(all_combinations)} parameter combinations")

    return [dict(zip(keys, combo)) for combo in all_combinations]
