"""Analysis module for training load and adaptation calculations."""

from .adaptation import detect_adaptation, detect_week_adaptations, summarize_week
from .load_model import (
    LoadModel,
    compute_load_series,
    compute_load_series_for_range,
    interpret_tsb,
    load_trend,
)
from .patterns import recompute_user_patterns
from .sports_metrics import (
    compute_decoupling,
    compute_efficiency_factor,
    decoupling_from_streams,
    estimate_decoupling,
    interpret_decoupling,
)
from .tss_aggregator import aggregate_daily_tss, daily_tss_frame

__all__ = [
    "LoadModel",
    "aggregate_daily_tss",
    "daily_tss_frame",
    "compute_load_series",
    "compute_load_series_for_range",
    "interpret_tsb",
    "load_trend",
    "compute_efficiency_factor",
    "compute_decoupling",
    "decoupling_from_streams",
    "estimate_decoupling",
    "interpret_decoupling",
    "detect_adaptation",
    "detect_week_adaptations",
    "summarize_week",
    "recompute_user_patterns",
]
