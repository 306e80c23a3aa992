"""
Script for generating a synthetic monthly publication-count table.

The table has the year, month and count columns read by MonthlyCountDataset and is produced by
a seasonal ARIMA path mapped through an inverse Box-Cox transform.
"""

import argparse
import logging
import os

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from utils.synthetic import simulate_monthly_counts


def setup_logging():
    """
    Configure logging to file and console.
    """
    os.makedirs("results/logs", exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler("results/logs/synthetic_data.log"),
            logging.StreamHandler()
        ]
    )


def plot_synthetic_counts(df: pd.DataFrame, name: str, output_dir: str = "results/plots"):
    """
    Plot the generated count table.
    """
    os.makedirs(output_dir, exist_ok=True)
    dates = pd.to_datetime(df[["year", "month"]].assign(day=1))
    plt.figure(figsize=(12, 6))
    plt.plot(dates, df["count"], label="count")
    plt.title(f"Synthetic monthly counts: {name}")
    plt.xlabel("Date")
    plt.ylabel("Count")
    plt.legend()
    plt.grid(True)
    output_path = os.path.join(output_dir, f"{name}_plot.png")
    plt.savefig(output_path)
    plt.close()
    logging.info(f"Saved plot to {output_path}")


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a synthetic monthly count table")
    parser.add_argument('--name', default='synthetic_publications', help="Dataset name, used for the file name")
    parser.add_argument('--output-dir', default='data', help="Directory of the generated CSV")
    parser.add_argument('--length', type=int, default=576, help="Number of months")
    parser.add_argument('--start', default='1970-01-01', help="First month")
    parser.add_argument('--level', type=float, default=400.0, help="Typical monthly count")
    parser.add_argument('--lam', type=float, default=0.5, help="Box-Cox parameter of the generating scale")
    parser.add_argument('--ar', type=float, nargs='*', default=[-0.4], help="Nonseasonal AR coefficients")
    parser.add_argument('--seasonal-ma', type=float, nargs='*', default=[-0.9], help="Seasonal MA coefficients")
    parser.add_argument('--seed', type=int, default=42, help="Random seed")
    return parser.parse_args()


def main():
    """
    Generate the table, save it as CSV and plot it.
    """
    setup_logging()
    args = parse_arguments()
    df = simulate_monthly_counts(
        n=args.length,
        level=args.level,
        lam=args.lam,
        start=args.start,
        seed=args.seed,
        ar=args.ar,
        seasonal_ma=args.seasonal_ma,
    )
    os.makedirs(args.output_dir, exist_ok=True)
    output_path = os.path.join(args.output_dir, f"{args.name}.csv")
    df.to_csv(output_path, index=False)
    logging.info(f"Saved synthetic dataset with {len(df)} months to {output_path}")
    plot_synthetic_counts(df, args.name)


if __name__ == "__main__":
    main()
