"""
Partitioned top-K ranking.

Every query family funnels through ``rank_partitioned``: rows are split by a
group key (or kept as one group), each group is sorted by an ordering spec
and numbered 1..n, and only ranks ``<= limit`` are kept.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import numpy as np
import pandas as pd

from .errors import BuildCancelled, InvalidArgument

logger = logging.getLogger(__name__)

OrderSpec = Sequence[tuple[str, bool]]

_POSITION = "_input_position"


def _check_limit(limit: int | None) -> None:
    if limit is not None and limit <= 0:
        raise InvalidArgument(f"limit must be a positive integer, got {limit}")


def check_cancelled(cancel: threading.Event | None, what: str = "ranking") -> None:
    if cancel is not None and cancel.is_set():
        raise BuildCancelled(f"{what} cancelled")


def _rank_group(
    group: pd.DataFrame,
    order_by: OrderSpec,
    limit: int | None,
    rank_column: str,
    cancel: threading.Event | None,
) -> pd.DataFrame:
    check_cancelled(cancel)

    # Input position is the last key so full ties keep their input order.
    by = [name for name, _ in order_by] + [_POSITION]
    ascending = [asc for _, asc in order_by] + [True]
    ordered = group.sort_values(by, ascending=ascending, kind="mergesort", na_position="last")
    ordered = ordered.drop(columns=_POSITION)
    ordered[rank_column] = np.arange(1, len(ordered) + 1, dtype="int64")
    if limit is not None:
        ordered = ordered.head(limit)
    return ordered


def rank_partitioned(
    frame: pd.DataFrame,
    order_by: OrderSpec,
    group_key: str | list[str] | None = None,
    limit: int | None = None,
    rank_column: str = "rank",
    workers: int = 1,
    cancel: threading.Event | None = None,
) -> pd.DataFrame:
    """
    Rank rows within each group and keep the top ``limit`` of every group.

    ``order_by`` is a list of ``(column, ascending)`` pairs, primary first.
    With ``group_key=None`` the whole input is a single group (global
    top-K). ``limit=None`` keeps every rank. Groups are emitted in the order
    their first row appears, so output is deterministic whatever ``workers``
    is. ``cancel`` is checked before each group is ranked.
    """
    _check_limit(limit)

    if frame.empty:
        empty = frame.iloc[0:0].copy()
        empty[rank_column] = pd.Series(dtype="int64")
        return empty

    positioned = frame.assign(**{_POSITION: np.arange(len(frame))})
    if group_key is None:
        groups = [positioned]
    else:
        groups = [g for _, g in positioned.groupby(group_key, sort=False, dropna=False)]

    def _rank(group: pd.DataFrame) -> pd.DataFrame:
        return _rank_group(group, order_by, limit, rank_column, cancel)

    if workers > 1 and len(groups) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            ranked = list(pool.map(_rank, groups))
    else:
        ranked = [_rank(g) for g in groups]

    logger.debug("Ranked %d rows in %d groups", len(frame), len(groups))
    return pd.concat(ranked, ignore_index=True)


def top_ranks(frame: pd.DataFrame, limit: int, rank_column: str = "rank") -> pd.DataFrame:
    """Keep rows whose rank is within ``1..limit`` (inclusive)."""
    _check_limit(limit)
    return frame.loc[frame[rank_column] <= limit]
