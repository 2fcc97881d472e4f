"""
Small shared helpers for column handling.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable, Sequence

import polars as pl

from ..core.exceptions import DroppedColumnsWarning, MissingColumnError

logger = logging.getLogger(__name__)


def normalize_group_cols(by: str | Iterable[str] | None) -> list[str]:
    """Turn a ``by`` argument into a list of column names."""
    if by is None:
        return []
    if isinstance(by, str):
        return [by]
    return list(by)


def require_columns(
    df: pl.DataFrame,
    columns: Iterable[str],
    context: str = "",
    hint: str | None = None,
) -> None:
    """Raise MissingColumnError listing every absent column."""
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise MissingColumnError(missing, context=context, hint=hint)


def filter_group_columns(
    df: pl.DataFrame,
    columns: Sequence[str],
    context: str = "grouping",
) -> list[str]:
    """
    Keep the requested columns present in ``df`` and warn about the rest.

    Parameters
    ----------
    df : pl.DataFrame
        Table the columns should come from.
    columns : sequence of str
        Requested columns.
    context : str
        Used in the warning message.

    Returns
    -------
    list[str]
        Requested columns present in ``df``, in request order.
    """
    present = [c for c in columns if c in df.columns]
    dropped = [c for c in columns if c not in df.columns]
    if dropped:
        warnings.warn(
            f"Ignoring {context} columns not found in data: {', '.join(dropped)}",
            DroppedColumnsWarning,
            stacklevel=3,
        )
        logger.debug("Dropped %s columns %s", context, dropped)
    return present


def first_present(df: pl.DataFrame, candidates: Sequence[str]) -> str | None:
    """First of ``candidates`` that is a column of ``df``."""
    for name in candidates:
        if name in df.columns:
            return name
    return None


def finite_expr(column: str) -> pl.Expr:
    """True where ``column`` is a finite number; False for null and NaN/inf."""
    return pl.col(column).cast(pl.Float64).is_finite().fill_null(False)
