"""
Bounded response-history heuristic.

Looks at how a user reacted to past reminders, bucketed by hour of day, and
suggests a preferred delivery window and a frequency change. Suggestions are
advisory: the learned window only joins the optimal-window candidates, and the
hard scheduling gates always run first.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.config_domain import AdaptiveConfig, TimeWindow
from nudge.models.domain.enums import AdjustmentImpact, ResponseType
from nudge.models.domain.notification_domain import AdaptiveAdjustment
from nudge.models.domain.user_domain import LearnedWindow, UserResponse

logger = get_logger(__name__)

ENGAGEMENT_SCORES = {
    ResponseType.ACTIONED: 1.0,
    ResponseType.ACKNOWLEDGED: 0.7,
    ResponseType.DISMISSED: 0.2,
    ResponseType.IGNORED: 0.0,
}

WINDOW_HOURS = 2
MIN_TIMING_GAIN = 0.05
NEGATIVE_RATIO_LIMIT = 0.6


@dataclass(slots=True)
class AdaptiveResult:
    sample_size: int
    adjustments: list[AdaptiveAdjustment] = field(default_factory=list)
    learned_window: LearnedWindow | None = None

    @property
    def ready(self) -> bool:
        return bool(self.adjustments)


def impact_for(gain: float) -> AdjustmentImpact:
    if gain > 0.3:
        return AdjustmentImpact.SIGNIFICANT
    if gain > 0.15:
        return AdjustmentImpact.MODERATE
    return AdjustmentImpact.MINOR


def learned_time_window(window: LearnedWindow, weight: float) -> TimeWindow:
    return TimeWindow(
        start=f"{window.start_hour:02d}:00",
        end=f"{window.end_hour % 24:02d}:00",
        days=list(range(7)),
        weight=weight,
        label="learned",
    )


class ResponseHeuristic:
    def __init__(self, config: AdaptiveConfig | None = None):
        self.config = config or AdaptiveConfig()

    def analyze(self, user_id: str, responses: Sequence[UserResponse], now: datetime) -> AdaptiveResult:
        """
        Derive advisory adjustments from a user's response history.

        Nothing is suggested until the history holds at least
        ``minimum_data_points`` responses.
        """
        result = AdaptiveResult(sample_size=len(responses))
        if not self.config.enabled or len(responses) < self.config.minimum_data_points:
            logger.debug(
                "Not enough response history for adaptive scheduling",
                user_id=user_id,
                samples=len(responses),
                required=self.config.minimum_data_points,
            )
            return result

        scores_by_hour: dict[int, list[float]] = defaultdict(list)
        for response in responses:
            scores_by_hour[response.hour_of_day].append(ENGAGEMENT_SCORES[response.response_type])

        all_scores = [score for scores in scores_by_hour.values() for score in scores]
        mean = sum(all_scores) / len(all_scores)

        timing = self._best_window(scores_by_hour, len(all_scores))
        if timing is not None:
            start_hour, window_mean, window_samples = timing
            gain = window_mean - mean
            if gain > MIN_TIMING_GAIN:
                result.learned_window = LearnedWindow(
                    start_hour=start_hour,
                    end_hour=start_hour + WINDOW_HOURS,
                    score=round(window_mean, 4),
                    sample_size=window_samples,
                    learned_at=now,
                )
                result.adjustments.append(
                    AdaptiveAdjustment(
                        type="timing",
                        reason=(
                            f"Engagement between {start_hour:02d}:00 and "
                            f"{(start_hour + WINDOW_HOURS) % 24:02d}:00 is {gain:.2f} above average"
                        ),
                        adjustment=f"prefer {start_hour:02d}:00-{(start_hour + WINDOW_HOURS) % 24:02d}:00",
                        impact=impact_for(gain),
                    )
                )

        negative = sum(
            1
            for response in responses
            if response.response_type in (ResponseType.IGNORED, ResponseType.DISMISSED)
        )
        negative_ratio = negative / len(responses)
        if negative_ratio > NEGATIVE_RATIO_LIMIT:
            result.adjustments.append(
                AdaptiveAdjustment(
                    type="frequency",
                    reason=f"{negative_ratio:.0%} of recent reminders were ignored or dismissed",
                    adjustment="reduce reminder frequency",
                    impact=impact_for(negative_ratio - NEGATIVE_RATIO_LIMIT + 0.15),
                )
            )

        for adjustment in result.adjustments:
            logger.info(
                "Adaptive adjustment suggested",
                user_id=user_id,
                adjustment_type=adjustment.type,
                reason=adjustment.reason,
                impact=adjustment.impact.value,
            )
        return result

    def _best_window(
        self, scores_by_hour: dict[int, list[float]], total_samples: int
    ) -> tuple[int, float, int] | None:
        # A window needs a meaningful share of the samples to count
        min_samples = max(2, total_samples // 5)
        best: tuple[int, float, int] | None = None
        for start in range(0, 24 - WINDOW_HOURS + 1):
            scores = [s for hour in range(start, start + WINDOW_HOURS) for s in scores_by_hour.get(hour, [])]
            if len(scores) < min_samples:
                continue
            window_mean = sum(scores) / len(scores)
            if best is None or window_mean > best[1]:
                best = (start, window_mean, len(scores))
        return best
