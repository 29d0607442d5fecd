"""Adaptive distance threshold selection."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from review_knowledge.models.dto import ThresholdMethod


@dataclass(slots=True, frozen=True)
class AdaptiveThresholdConfig:
    min_candidates_for_gap: int = 8
    fallback_percentile: float = 0.75
    min_gap_size: float = 0.05
    floor: float = 0.15
    ceiling: float = 0.65


@dataclass(slots=True)
class ThresholdDecision:
    threshold: float
    method: ThresholdMethod
    candidate_count: int
    gap_size: float | None = None
    gap_index: int | None = None


DEFAULT_ADAPTIVE_CONFIG = AdaptiveThresholdConfig()


def compute_adaptive_threshold(
    distances: Sequence[float],
    configured_threshold: float,
    config: AdaptiveThresholdConfig = DEFAULT_ADAPTIVE_CONFIG,
) -> ThresholdDecision:
    """Pick a cutoff from the shape of the candidate distances.

    With enough candidates the cutoff sits just before the largest gap between
    consecutive sorted distances. Small candidate sets use a percentile. Gaps
    smaller than ``min_gap_size`` fall back to the configured value. Every
    result is clamped to ``[floor, ceiling]``.
    """
    if not distances:
        return ThresholdDecision(_clamp(configured_threshold, config), "configured", 0)

    ordered = sorted(distances)
    if len(ordered) < config.min_candidates_for_gap:
        index = min(math.floor(len(ordered) * config.fallback_percentile), len(ordered) - 1)
        return ThresholdDecision(_clamp(ordered[index], config), "percentile", len(ordered))

    max_gap = 0.0
    gap_index = 0
    for index in range(1, len(ordered)):
        gap = ordered[index] - ordered[index - 1]
        if gap > max_gap:
            max_gap = gap
            gap_index = index

    if max_gap < config.min_gap_size:
        return ThresholdDecision(_clamp(configured_threshold, config), "configured", len(ordered), gap_size=max_gap)

    return ThresholdDecision(
        _clamp(ordered[gap_index - 1], config),
        "adaptive",
        len(ordered),
        gap_size=max_gap,
        gap_index=gap_index,
    )


def _clamp(value: float, config: AdaptiveThresholdConfig) -> float:
    return max(config.floor, min(config.ceiling, value))


__all__ = ["AdaptiveThresholdConfig", "ThresholdDecision", "DEFAULT_ADAPTIVE_CONFIG", "compute_adaptive_threshold"]
