import logging
from typing import Dict, List, Tuple, Union

logger = logging.getLogger(__name__)


def _validate_param_space(param_space: Dict[str, Union[List, Dict]]) -> List[Tuple[str, List[int]]]:
    """
    Validate and expand a parameter space of integer model orders.

    Each parameter is either a non-empty list of non-negative integers or a dictionary
    describing an inclusive integer range with 'min', 'max' and an optional positive 'step'.

    Args:
        param_space: Dictionary where keys are parameter names and values are either:
            - A non-empty list of discrete orders (e.g., [0, 1, 2]).
            - A dictionary with 'min', 'max', and optional 'step' keys.

    Returns:
        List of (name, values) tuples with every range expanded to an explicit list.

    Raises:
        ValueError: If param_space is invalid (e.g., empty lists, invalid ranges, negative orders).
        TypeError: If min, max, step or listed values are not integers.

    Example:
        >>> _validate_param_space({'p': {'min': 0, 'max': 2}, 'Q': [0, 1]})
        [('p', [0, 1, 2]), ('Q', [0, 1])]
    """
    if not param_space:
        raise ValueError("param_space cannot be empty")

    validated_params = []
    for key, value in param_space.items():
        if isinstance(value, list):
            if not value:
                raise ValueError(f"Parameter '{key}' has an empty list of values")
            if not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
                raise TypeError(f"Parameter '{key}' values must be integers")
            if any(v < 0 for v in value):
                raise ValueError(f"Parameter '{key}' values must be non-negative")
            validated_params.append((key, sorted(set(value))))
            continue

        if isinstance(value, dict):
            if "min" not in value or "max" not in value:
                raise ValueError(f"Parameter '{key}' range must include 'min' and 'max' keys")
            min_value, max_value = value["min"], value["max"]
            step = value.get("step", 1)
            if not all(isinstance(v, int) and not isinstance(v, bool) for v in (min_value, max_value, step)):
                raise TypeError(f"Parameter '{key}' min/max/step must be integers")
            if min_value < 0:
                raise ValueError(f"Parameter '{key}' has a negative minimum ({min_value})")
            if min_value > max_value:
                raise ValueError(f"Parameter '{key}' has invalid range: min ({min_value}) > max ({max_value})")
            if step <= 0:
                raise ValueError(f"Parameter '{key}' has invalid step: must be positive")
            validated_params.append((key, list(range(min_value, max_value + 1, step))))
            continue

        raise ValueError(f"Invalid format for parameter '{key}': must be list or dict")

    return validated_params
