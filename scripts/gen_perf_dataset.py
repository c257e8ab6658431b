#!/usr/bin/env python3
"""Dataset generation script for performance testing.

Generates synthetic contact sheets (CSV or XLSX, chosen by suffix) matching
the sample workbook config: ``Full Name, Email Address, Age, Signup Date``.
A configurable share of rows is deliberately broken (bad email, underage,
duplicate email, missing name) so validation paths get exercised too.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

HEADERS = ["Full Name", "Email Address", "Age", "Signup Date"]


def generate_contacts(rows: int, invalid_ratio: float = 0.1, seed: int = 42) -> pd.DataFrame:
    """Generate contact rows; roughly ``invalid_ratio`` of them fail validation.

    Args:
        rows: Number of data rows to generate
        invalid_ratio: Share of rows to corrupt (0..1)
        seed: Random seed for reproducible data

    Returns:
        DataFrame with the contact headers as columns
    """
    rng = np.random.default_rng(seed)
    first = ["Alice", "Bob", "Carol", "Dave", "Erin", "Frank", "Grace", "Heidi"]
    names = [f"{first[i % len(first)]} {i}" for i in range(rows)]
    emails = [f"user{i}@example.com" for i in range(rows)]
    ages = rng.integers(18, 90, rows).tolist()
    dates = pd.date_range("2023-01-01", "2024-12-31", periods=100)
    signup = [d.strftime("%Y-%m-%d") for d in rng.choice(dates, rows)]

    broken = rng.random(rows) < invalid_ratio
    for i in np.flatnonzero(broken):
        kind = i % 4
        if kind == 0:
            emails[i] = f"user{i}-at-example.com"
        elif kind == 1:
            ages[i] = int(rng.integers(1, 18))
        elif kind == 2 and i > 0:
            emails[i] = emails[i - 1]
        else:
            names[i] = ""

    return pd.DataFrame({"Full Name": names, "Email Address": emails, "Age": ages, "Signup Date": signup})


def write_dataset(output_path: Path, df: pd.DataFrame) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() == ".csv":
        df.to_csv(output_path, index=False)
    else:
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Contacts", index=False)
    print(f"Created {output_path} ({len(df):,} rows x {len(df.columns)} columns)")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate synthetic contact datasets for performance testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/contacts.csv
  %(prog)s data/contacts.xlsx --rows 100000 --invalid-ratio 0.25
        """,
    )
    parser.add_argument("output", type=Path, help="Output file path (.csv or .xlsx)")
    parser.add_argument("--rows", type=int, default=50_000, help="Number of data rows (default: 50,000)")
    parser.add_argument("--invalid-ratio", type=float, default=0.1, help="Share of broken rows (default: 0.1)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 0 <= args.invalid_ratio <= 1:
        print("Error: --invalid-ratio must be between 0 and 1", file=sys.stderr)
        return 1

    write_dataset(args.output, generate_contacts(args.rows, args.invalid_ratio, args.seed))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
