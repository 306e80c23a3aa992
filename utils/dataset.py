"""Module for loading the monthly publication count table.

This module provides the MonthlyCountDataset class which reads a table with year, month and
count columns, orders it by month and checks that it forms a contiguous monthly series with
exactly one observation per calendar month.
"""

import logging
import os
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from utils.exceptions import DomainError

logger = logging.getLogger(__name__)


class MonthlyCountDataset:
    """Class for loading and validating a monthly count series."""

    def __init__(
        self,
        dataset_name: str,
        config: Dict,
        data: Optional[pd.DataFrame] = None,
        year_column: Optional[str] = None,
        month_column: Optional[str] = None,
        count_column: Optional[str] = None,
        expected_length: Optional[int] = None,
    ) -> None:
        """
        Initialize the MonthlyCountDataset.

        Args:
            dataset_name: Name of the dataset, used in logs, plots and the report.
            config: Configuration dictionary; its ``dataset`` section supplies the path and column
                names when they are not passed explicitly.
            data: Optional DataFrame with the count table. If None, loads the CSV at ``dataset.path``.
            year_column: Name of the year column. Defaults to config or 'year'.
            month_column: Name of the month column. Defaults to config or 'month'.
            count_column: Name of the count column. Defaults to config or 'count'.
            expected_length: Optional number of months the series must contain.

        Raises:
            ValueError: If dataset_name is empty or no data source is available.
            FileNotFoundError: If the configured file does not exist.
            DomainError: If the table does not form a contiguous monthly series.
        """
        if not dataset_name:
            raise ValueError("dataset_name cannot be empty.")
        dataset_config = config.get("dataset", {}) or {}
        if data is None and "path" not in dataset_config:
            raise ValueError("No data provided and config['dataset'] has no 'path'.")

        self.name = dataset_name
        self.config = config
        self.path = dataset_config.get("path") if data is None else None
        self.year_column = year_column or dataset_config.get("year_column", "year")
        self.month_column = month_column or dataset_config.get("month_column", "month")
        self.count_column = count_column or dataset_config.get("count_column", "count")
        self.expected_length = expected_length if expected_length is not None else dataset_config.get("expected_length")

        raw = data if data is not None else self._load_data()
        self.series = self._prepare_data(raw)
        logger.info(
            f"MonthlyCountDataset '{self.name}' initialized with {len(self.series)} months "
            f"({self.series.index[0]:%Y-%m} to {self.series.index[-1]:%Y-%m})"
        )

    def _load_data(self) -> pd.DataFrame:
        """
        Load the count table from the CSV file specified in the config.

        Returns:
            DataFrame containing the loaded table.

        Raises:
            FileNotFoundError: If the file does not exist.
            RuntimeError: If CSV parsing fails.
        """
        if not os.path.exists(self.path):
            raise FileNotFoundError(f"Dataset file not found: {self.path}")
        try:
            df = pd.read_csv(self.path)
        except pd.errors.ParserError as e:
            logger.error(f"Failed to parse CSV file {self.path}: {str(e)}")
            raise RuntimeError(f"Failed to parse CSV file: {str(e)}")
        logger.info(f"Dataset '{self.path}' loaded with {len(df)} rows.")
        return df

    def _prepare_data(self, df: pd.DataFrame) -> pd.Series:
        """
        Order the table by month and build a count series with a monthly DatetimeIndex.

        Args:
            df: Table with year, month and count columns.

        Returns:
            Float series of counts indexed by month start.

        Raises:
            DomainError: If columns are missing, counts are missing or negative, months are
                duplicated or missing, or the length differs from ``expected_length``.
        """
        if df.empty:
            raise DomainError("Input table cannot be empty.")
        required = [self.year_column, self.month_column, self.count_column]
        missing_cols = [col for col in required if col not in df.columns]
        if missing_cols:
            raise DomainError(f"Missing columns in dataset: {missing_cols}")

        table = df[required].copy()
        if table.isnull().to_numpy().any():
            raise DomainError("Year, month and count columns cannot contain missing values.")
        months = table[self.month_column].astype(int)
        if ((months < 1) | (months > 12)).any():
            raise DomainError("Month values must lie in 1..12.")

        index = pd.to_datetime(
            pd.DataFrame({"year": table[self.year_column].astype(int), "month": months, "day": 1})
        )
        counts = pd.Series(table[self.count_column].astype(float).to_numpy(), index=pd.DatetimeIndex(index))
        counts = counts.sort_index()

        if counts.index.has_duplicates:
            dupes = counts.index[counts.index.duplicated()].strftime("%Y-%m").unique().tolist()
            raise DomainError(f"Duplicate observations for months: {dupes}")
        if (counts < 0).any():
            raise DomainError("Counts must be non-negative.")
        if not np.isfinite(counts.to_numpy()).all():
            raise DomainError("Counts must be finite.")

        full_index = pd.date_range(counts.index[0], counts.index[-1], freq="MS")
        if len(full_index) != len(counts):
            gaps = full_index.difference(counts.index).strftime("%Y-%m").tolist()
            raise DomainError(f"Series has gaps; missing months: {gaps[:12]}{'...' if len(gaps) > 12 else ''}")
        if self.expected_length is not None and len(counts) != self.expected_length:
            raise DomainError(f"Expected {self.expected_length} monthly observations, found {len(counts)}.")

        counts.index = full_index
        counts.name = self.count_column
        return counts

    def summary(self) -> Dict[str, Any]:
        """
        Return descriptive statistics of the series for the report.

        Returns:
            Dictionary with the date range, length and basic count statistics.
        """
        return {
            "name": self.name,
            "start": f"{self.series.index[0]:%Y-%m}",
            "end": f"{self.series.index[-1]:%Y-%m}",
            "n_obs": int(len(self.series)),
            "mean": float(self.series.mean()),
            "std": float(self.series.std()),
            "min": float(self.series.min()),
            "max": float(self.series.max()),
            "n_zero": int((self.series == 0).sum()),
        }

    def by_month(self) -> pd.DataFrame:
        """
        Return the counts as a year-by-month table.

        Returns:
            DataFrame with one row per year and one column per calendar month (1..12).
        """
        frame = pd.DataFrame({
            "year": self.series.index.year,
            "month": self.series.index.month,
            "count": self.series.to_numpy(),
        })
        return frame.pivot(index="year", columns="month", values="count")
