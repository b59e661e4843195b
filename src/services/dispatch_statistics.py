"""Dispatch statistics over a window of records."""
from typing import Dict, List

import pandas as pd

from ..models.dispatch import Dispatch, DispatchState, DispatchStatistics, Priority


def dispatches_to_frame(dispatches: List[Dispatch]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "id": d.id,
                "state": d.state.value,
                "priority": d.priority.value,
                "actual_duration_min": d.actual_duration_min,
            }
            for d in dispatches
        ],
        columns=["id", "state", "priority", "actual_duration_min"],
    )


def _counts(series: pd.Series, keys) -> Dict[str, int]:
    counts = series.value_counts()
    return {key: int(counts.get(key, 0)) for key in keys}


def compute_dispatch_statistics(dispatches: List[Dispatch]) -> DispatchStatistics:
    df = dispatches_to_frame(dispatches)
    total = len(df)

    by_state = _counts(df["state"], [s.value for s in DispatchState])
    by_priority = _counts(df["priority"], [p.value for p in Priority])

    completion_rate = round(by_state[DispatchState.COMPLETED.value] / total * 100, 1) if total else 0.0

    durations = pd.to_numeric(df["actual_duration_min"], errors="coerce").dropna()
    average_duration = round(float(durations.mean()), 1) if len(durations) else None

    return DispatchStatistics(
        total=total,
        by_state=by_state,
        by_priority=by_priority,
        completion_rate=completion_rate,
        average_actual_duration_min=average_duration,
    )


def group_by_state(dispatches: List[Dispatch]) -> Dict[str, List[Dispatch]]:
    grouped: Dict[str, List[Dispatch]] = {}
    for dispatch in dispatches:
        grouped.setdefault(dispatch.state.value, []).append(dispatch)
    return grouped
