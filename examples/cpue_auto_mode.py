#!/usr/bin/env python3
"""
Automatic CPUE Estimator Selection
==================================

Roving and access-point interviews mix completed and incomplete trips.
Completed trips support the mean-of-ratios estimator; incomplete trips are
better served by ratio-of-means after dropping very short trips. With
``mode="auto"`` pycreel inspects the trip completeness flag and picks:

- all complete   -> mean of ratios
- all incomplete -> ratio of means (trips under ``min_trip_hours`` dropped)
- mixed          -> effort-weighted hybrid of the two

This script builds three interview sets, one per routing state, and prints
the decision, the estimate and the hybrid weights.

Usage
-----
    uv run python examples/cpue_auto_mode.py
    uv run python examples/cpue_auto_mode.py --min-trip-hours 1.0 --verbose
"""

import argparse
import logging

import numpy as np
import polars as pl
from rich.console import Console
from rich.table import Table

from pycreel import CreelData, est_cpue
from pycreel.estimation.variance import calculate_cv

console = Console()


def make_interviews(n: int, complete_share: float, seed: int) -> pl.DataFrame:
    """Interviews over 10 days with a given share of completed trips."""
    rng = np.random.default_rng(seed)
    complete = rng.random(n) < complete_share
    # Incomplete trips are interviewed part-way through
    hours = np.where(complete, rng.gamma(4.0, 1.0, n), rng.uniform(0.1, 3.0, n))
    catch = rng.poisson(0.8 * hours)
    return pl.DataFrame(
        {
            "date": [f"2024-07-{d:02d}" for d in rng.integers(1, 11, n)],
            "location": rng.choice(["east_launch", "west_launch"], n),
            "catch_total": catch,
            "hours_fished": np.round(hours, 2),
            "trip_complete": complete,
        }
    )


def describe(name: str, interviews: pl.DataFrame, min_trip_hours: float) -> None:
    """Run auto-mode CPUE and print the routing decision."""
    result = est_cpue(CreelData(interviews=interviews), mode="auto", min_trip_hours=min_trip_hours)
    routing = result.diagnostics["routing"]

    table = Table(title=f"{name}: {routing['state']} -> {routing['method']}")
    table.add_column("Quantity", justify="left")
    table.add_column("Value", justify="right")
    table.add_row("Interviews", str(routing["n_input"]))
    table.add_row("Complete", f"{routing['n_complete']} ({routing['pct_complete']:.1f}%)")
    table.add_row("Incomplete", f"{routing['n_incomplete']} ({routing['pct_incomplete']:.1f}%)")
    table.add_row("Truncated (short trips)", str(routing.get("n_truncated", 0)))
    table.add_row("CPUE (fish/hour)", f"{result.estimate:.3f}")
    if result.se is not None:
        table.add_row("SE", f"{result.se:.3f}")
        table.add_row("CV %", f"{calculate_cv(result.estimate, result.se):.1f}")

    hybrid = result.diagnostics.get("hybrid")
    if hybrid is not None:
        table.add_row("Complete-trip CPUE", f"{hybrid.cpue_complete:.3f}")
        table.add_row("Incomplete-trip CPUE", f"{hybrid.cpue_incomplete:.3f}")
        table.add_row("Weight complete", f"{hybrid.weight_complete:.3f}")
        table.add_row("Weight incomplete", f"{hybrid.weight_incomplete:.3f}")

    console.print(table)


def main():
    """Parse arguments and demonstrate the three routing states."""
    parser = argparse.ArgumentParser(description="Demonstrate auto-mode CPUE routing")
    parser.add_argument(
        "--min-trip-hours",
        type=float,
        default=0.5,
        help="Incomplete trips shorter than this are dropped (default: 0.5)",
    )
    parser.add_argument("--n", type=int, default=120, help="Interviews per scenario")
    parser.add_argument("--seed", type=int, default=11, help="Random seed")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show routing log lines")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    scenarios = [
        ("Access point", 1.0),
        ("Roving", 0.0),
        ("Mixed", 0.6),
    ]
    for i, (name, share) in enumerate(scenarios):
        interviews = make_interviews(args.n, share, args.seed + i)
        describe(name, interviews, args.min_trip_hours)

    console.print("\n[green]Done![/green]")


if __name__ == "__main__":
    main()
