"""Module for loading and validating configuration files for the report pipeline.

This module provides utilities to load a YAML configuration file and validate its structure
for the dataset, preprocessing, model search, outlier handling, diagnostics and report
sections. Optional sections are completed with defaults after validation.
"""

import copy
import logging
import os
from typing import Any, Dict, Optional

import pandas as pd
import yaml
from schema import Schema, And, Or, Optional as SchemaOptional, SchemaError

logger = logging.getLogger(__name__)

SEARCH_PARAMS = ("p", "q", "P", "Q")

DEFAULT_CONFIG: Dict[str, Any] = {
    "preprocessing": {
        "power_transform": {
            "enabled": True,
            "lambda": None,
            "lambda_grid": {"min": 0.36, "max": 0.65, "step": 0.01},
            "ar_order": None,
        },
        "differencing": {
            "enabled": True,
            "order": 1,
            "seasonal_order": 1,
            "seasonal_period": 12,
        },
    },
    "search": {
        "params": {name: {"min": 0, "max": 3} for name in SEARCH_PARAMS},
        "n_jobs": 1,
        "timeout": None,
        "maxiter": 200,
        "cache_path": None,
    },
    "model": None,
    "outliers": {
        "enabled": True,
        "alpha": 0.05,
        "robust": True,
        "max_iter": 1,
    },
    "diagnostics": {
        "ljung_box_lags": 20,
        "alpha": 0.05,
        "model_df": 0,
        "daniell_half_width": 8,
        "confidence": 0.95,
    },
    "report": {
        "output_dir": "results",
        "plots": True,
        "top_candidates": 10,
    },
}


class ConfigValidationError(Exception):
    """Compact, human-readable configuration validation error."""
    pass


def _compact_schema_error(err: SchemaError) -> str:
    """
    Turn a verbose SchemaError into a short, readable message.
    We try err.code first (often the clearest), then fallback to str(err).
    """
    msg = (err.code or str(err) or "").strip()
    msg = " ".join(msg.split())
    return msg


def _number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _define_preprocessing_schema() -> Schema:
    """
    Define the schema for preprocessing configuration.

    Returns:
        Schema for validating power transform and differencing settings.
    """
    return Schema({
        SchemaOptional("power_transform"): {
            SchemaOptional("enabled"): bool,
            SchemaOptional("lambda"): Or(None, And(_number, error="`power_transform.lambda` must be a number")),
            SchemaOptional("lambda_grid"): And(
                {
                    "min": And(_number),
                    "max": And(_number),
                    SchemaOptional("step"): And(_number, lambda x: x > 0),
                },
                lambda d: d["min"] <= d["max"],
                error="`lambda_grid.min` must be less than or equal to `lambda_grid.max`",
            ),
            SchemaOptional("ar_order"): Or(None, And(int, lambda x: x > 0)),
        },
        SchemaOptional("differencing"): {
            SchemaOptional("enabled"): bool,
            SchemaOptional("order"): And(int, lambda x: x >= 0),
            SchemaOptional("seasonal_order"): And(int, lambda x: x >= 0),
            SchemaOptional("seasonal_period"): And(
                int, lambda x: x > 1, error="`differencing.seasonal_period` must be an integer > 1"
            ),
        },
    })


def validate_preprocessing(config: Dict, data: Optional[pd.Series] = None) -> None:
    """
    Validate the preprocessing section of the configuration.

    Args:
        config: Preprocessing configuration dictionary.
        data: Optional input series used to check the differencing span against its length.

    Raises:
        SchemaError: If the preprocessing configuration is invalid.
        ValueError: If the total differencing span is not shorter than the data.
    """
    try:
        _define_preprocessing_schema().validate(config)

        diff = config.get("differencing", {})
        if data is not None and diff.get("enabled", True):
            span = diff.get("order", 1) + diff.get("seasonal_order", 1) * diff.get("seasonal_period", 12)
            if span >= len(data):
                raise ValueError(
                    f"Total differencing span ({span}) must be less than data length ({len(data)})"
                )
        logger.debug("Validated preprocessing configuration: %s", config)
    except (SchemaError, ValueError) as e:
        logger.error("Preprocessing validation failed: %s", str(e))
        raise


def _merge_defaults(config: Dict, defaults: Dict) -> Dict:
    """Recursively fill keys missing from ``config`` with values from ``defaults``."""
    merged = copy.deepcopy(config)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
    return merged


def validate_config(config: Dict) -> Dict:
    """
    Validate the report configuration and fill in defaults for optional settings.

    Args:
        config: Configuration dictionary loaded from YAML.

    Returns:
        Validated configuration dictionary with defaults applied.

    Raises:
        SchemaError: If the configuration does not match the schema.
        ValueError: If cross-field constraints are violated.
    """
    integer_range = Schema(
        And({
            "min": And(int, lambda x: x >= 0),
            "max": And(int, lambda x: x >= 0),
        },
        lambda d: d["min"] <= d["max"],
        error="`min` must be less than or equal to `max` in integer range")
    )
    order_values = Or([And(int, lambda x: x >= 0)], integer_range)

    schema = Schema({
        "dataset": {
            "path": And(
                str,
                lambda x: os.path.exists(x),
                error="Dataset file path does not exist; create the sample data with scripts/generate_synthetic_data.py",
            ),
            SchemaOptional("name"): And(str, len),
            SchemaOptional("year_column"): And(str, len),
            SchemaOptional("month_column"): And(str, len),
            SchemaOptional("count_column"): And(str, len),
            SchemaOptional("expected_length"): And(int, lambda x: x > 0),
        },
        SchemaOptional("preprocessing"): _define_preprocessing_schema(),
        SchemaOptional("search"): {
            SchemaOptional("params"): {name: order_values for name in SEARCH_PARAMS},
            SchemaOptional("n_jobs"): And(int, lambda x: x != 0),
            SchemaOptional("timeout"): Or(None, And(_number, lambda x: x > 0)),
            SchemaOptional("maxiter"): And(int, lambda x: x > 0),
            SchemaOptional("cache_path"): Or(None, And(str, len)),
        },
        SchemaOptional("model"): Or(None, {name: And(int, lambda x: x >= 0) for name in SEARCH_PARAMS}),
        SchemaOptional("outliers"): {
            SchemaOptional("enabled"): bool,
            SchemaOptional("alpha"): And(_number, lambda x: 0 < x < 1),
            SchemaOptional("robust"): bool,
            SchemaOptional("max_iter"): And(int, lambda x: x >= 1),
        },
        SchemaOptional("diagnostics"): {
            SchemaOptional("ljung_box_lags"): And(int, lambda x: x > 0),
            SchemaOptional("alpha"): And(_number, lambda x: 0 < x < 1),
            SchemaOptional("model_df"): And(int, lambda x: x >= 0),
            SchemaOptional("daniell_half_width"): And(int, lambda x: x >= 0),
            SchemaOptional("confidence"): And(_number, lambda x: 0 < x < 1),
        },
        SchemaOptional("report"): {
            SchemaOptional("output_dir"): And(str, len),
            SchemaOptional("plots"): bool,
            SchemaOptional("top_candidates"): And(int, lambda x: x > 0),
        },
    })

    try:
        validated_config = schema.validate(config)
        if "preprocessing" in validated_config:
            validate_preprocessing(validated_config["preprocessing"])
        diagnostics = validated_config.get("diagnostics", {})
        if diagnostics.get("model_df", 0) >= diagnostics.get("ljung_box_lags", 20):
            raise ValueError("`diagnostics.model_df` must be smaller than `diagnostics.ljung_box_lags`")
        validated_config = _merge_defaults(validated_config, DEFAULT_CONFIG)
        validated_config["dataset"].setdefault("name", os.path.splitext(os.path.basename(config["dataset"]["path"]))[0])
        logger.info("Configuration validation passed successfully")
        return validated_config
    except (SchemaError, ValueError) as e:
        logger.error(f"Configuration validation failed: {str(e)}")
        raise


def load_config(config_path: str = "config.yaml") -> Dict:
    """
    Load and validate a configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file. Defaults to 'config.yaml'.

    Returns:
        Validated configuration dictionary.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ConfigValidationError: If the YAML is invalid or does not match the schema.
        ValueError: If the configuration file is empty.
    """
    if not os.path.exists(config_path):
        logger.error(f"Configuration file not found: {config_path}")
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    try:
        with open(config_path, "r") as file:
            config = yaml.safe_load(file)
        if not config:
            logger.error("Configuration file is empty")
            raise ValueError("Configuration file is empty")
        return validate_config(config)
    except (yaml.YAMLError, SchemaError) as e:
        # Wrap with a short message (no stack trace) for the caller.
        raise ConfigValidationError(_compact_schema_error(e) if isinstance(e, SchemaError) else str(e))
