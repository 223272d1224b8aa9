"""Core attribution engine for multi-touch customer journey analysis."""

import logging
import math
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from datetime import timedelta
from typing import Any

from campaign_attribution.attribution.models import (
    AttributionModel,
    CalculationMetadata,
    ChannelCombination,
    ChannelEffectivenessStats,
    ChannelModelCredit,
    ConversionPath,
    CrossChannelMetrics,
    Journey,
    JourneyMetrics,
    ModelComparison,
    ModelRecommendation,
    ModelSummary,
    ModelType,
    MultiTouchCredit,
    Touchpoint,
)
from campaign_attribution.attribution.rules import (
    PathContext,
    WeightRule,
    finalize_percentages,
    path_percentages,
)
from campaign_attribution.core.config import AttributionConfig, get_settings
from campaign_attribution.core.exceptions import TouchpointNotFoundError

logger = logging.getLogger(__name__)

ModelTypeLike = ModelType | str
GeneratedModels = Mapping[ModelType, Sequence[AttributionModel]]

# Paths this short and this fast look like bounces rather than considered journeys.
QUICK_PATH_MAX_TOUCHES = 2
QUICK_PATH_SECONDS = 300


class CreditedPath:
    """Touchpoints credited for one conversion, or the trailing open path."""

    __slots__ = ("touchpoints", "conversion")

    def __init__(self, touchpoints: list[Touchpoint], conversion: Touchpoint | None):
        self.touchpoints = touchpoints
        self.conversion = conversion

    @property
    def is_closed(self) -> bool:
        return self.conversion is not None


def split_credited_paths(
    journey: Journey, lookback_window_days: float | None = None
) -> list[CreditedPath]:
    """Split a journey into the paths credited for each conversion.

    A conversion's path runs from just after the previous conversion up to and
    including itself. Touchpoints after the final conversion form an open path.

    Args:
        journey: Journey snapshot to split
        lookback_window_days: When set, touchpoints that occurred more than
            this many days before their conversion are left out of its path
    """
    paths = []
    current: list[Touchpoint] = []

    for touch in journey.touchpoints:
        current.append(touch)
        if touch.is_conversion:
            if lookback_window_days is not None:
                window_start = touch.occurred_at - timedelta(days=lookback_window_days)
                current = [t for t in current if t.occurred_at >= window_start]
            paths.append(CreditedPath(current, touch))
            current = []

    if current:
        paths.append(CreditedPath(current, None))

    return paths


class AttributionEngine:
    """Engine for calculating multi-touch attribution over journey snapshots.

    The engine keeps no per-journey state: every call works on the snapshot it
    is handed and returns fresh results, so one instance can serve concurrent
    callers.
    """

    def __init__(
        self,
        config: AttributionConfig | None = None,
        channel_performance: Mapping[str, float] | None = None,
        data_driven_strategy: WeightRule | None = None,
    ):
        """Initialize attribution engine.

        Args:
            config: Model parameters; read from settings when omitted
            channel_performance: Historical performance score per channel,
                used by the data-driven model
            data_driven_strategy: Optional replacement for the composite
                data-driven weighting
        """
        self.config = config if config is not None else get_settings().attribution
        self.channel_performance = dict(channel_performance or {})
        self._context = PathContext(
            config=self.config,
            channel_performance=self.channel_performance,
            data_driven_strategy=data_driven_strategy,
        )

    def calculate_attribution_for_touchpoint(
        self,
        touchpoint: Touchpoint,
        model_type: ModelTypeLike,
        journey: Journey,
    ) -> float:
        """Percentage credit (0-100) one touchpoint receives under a model.

        Touchpoints that fall outside their conversion's lookback window
        receive no credit.

        Args:
            touchpoint: Touchpoint belonging to ``journey``
            model_type: Model type or its name
            journey: Journey snapshot providing order and conversions

        Raises:
            UnsupportedModelError: If the model type is unknown
            TouchpointNotFoundError: If the touchpoint is not in the journey
        """
        model_type = ModelType.parse(model_type)

        for path in self._credited_paths(journey):
            for index, touch in enumerate(path.touchpoints):
                if touch.id == touchpoint.id:
                    percentages = path_percentages(
                        path.touchpoints, model_type, self._context
                    )
                    return percentages[index]

        if any(touch.id == touchpoint.id for touch in journey.touchpoints):
            # Outside the lookback window of its conversion
            return 0.0

        raise TouchpointNotFoundError(touchpoint.id, journey.journey_id)

    def generate_attribution_models(
        self,
        journey: Journey,
        model_types: Iterable[ModelTypeLike] | None = None,
    ) -> dict[ModelType, list[AttributionModel]]:
        """Attribution rows for every conversion of a journey, per model type.

        Args:
            journey: Journey snapshot to attribute
            model_types: Models to run; all models when omitted

        Returns:
            Rows keyed by model type, empty when the journey never converted
        """
        if model_types is None:
            requested = list(ModelType)
        else:
            requested = list(dict.fromkeys(ModelType.parse(m) for m in model_types))

        if not journey.has_conversions:
            logger.debug(
                f"Journey {journey.journey_id} has no conversions, skipping attribution"
            )
            return {}

        closed_paths = [
            path for path in self._credited_paths(journey) if path.is_closed
        ]
        conversion_values = [
            path.conversion.resolve_conversion_value(
                self.config.default_conversion_value
            )
            for path in closed_paths
        ]
        conversion_count = len(closed_paths)

        results: dict[ModelType, list[AttributionModel]] = {}
        for model_type in requested:
            rows = []
            for path, conversion_value in zip(closed_paths, conversion_values):
                percentages = path_percentages(
                    path.touchpoints, model_type, self._context
                )
                for position, (touch, percentage) in enumerate(
                    zip(path.touchpoints, percentages), start=1
                ):
                    rows.append(
                        AttributionModel(
                            touchpoint_id=touch.id,
                            model_type=model_type,
                            attribution_percentage=percentage,
                            conversion_value=percentage / 100.0 * conversion_value,
                            calculation_metadata=CalculationMetadata(
                                model_type=model_type,
                                touchpoint_position=position,
                                total_touchpoints=len(path.touchpoints),
                                conversion_count=conversion_count,
                                journey_id=journey.journey_id,
                                conversion_touchpoint_id=path.conversion.id,
                                algorithm_version=self.config.algorithm_version,
                            ),
                        )
                    )
            logger.debug(
                f"Model {model_type.value} produced {len(rows)} rows "
                f"for journey {journey.journey_id}"
            )
            results[model_type] = rows

        logger.info(
            f"Generated {len(results)} attribution models for journey "
            f"{journey.journey_id} ({conversion_count} conversions, "
            f"{len(journey.touchpoints)} touchpoints)"
        )
        return results

    def channel_effectiveness_analysis(
        self,
        journey: Journey,
        model_type: ModelTypeLike = ModelType.LINEAR,
    ) -> dict[str, ChannelEffectivenessStats]:
        """Per-channel touch volume, conversions and attributed value."""
        model_type = ModelType.parse(model_type)
        if not journey.touchpoints:
            return {}

        rows = self.generate_attribution_models(journey, [model_type]).get(
            model_type, []
        )
        value_by_touch: dict[str, float] = defaultdict(float)
        for row in rows:
            value_by_touch[row.touchpoint_id] += row.conversion_value

        stats = {}
        for channel in journey.channels:
            touches = [t for t in journey.touchpoints if t.channel == channel]
            conversions = sum(1 for t in touches if t.is_conversion)
            total_value = sum(value_by_touch.get(t.id, 0.0) for t in touches)

            stats[channel] = ChannelEffectivenessStats(
                touchpoint_count=len(touches),
                conversion_count=conversions,
                conversion_rate=conversions / len(touches),
                total_attribution_value=round(total_value, 2),
                roi_score=round(total_value / len(touches), 2),
            )

        return stats

    def journey_attribution_summary(
        self,
        journey: Journey,
        models: GeneratedModels | None = None,
    ) -> dict[ModelType, ModelSummary]:
        """Summarise generated attribution models for a journey.

        Args:
            journey: Journey the models were generated for
            models: Output of ``generate_attribution_models``; generated for
                every model type when omitted
        """
        if not journey.has_conversions:
            return {}

        if models is None:
            models = self.generate_attribution_models(journey)

        touches_by_id = {touch.id: touch for touch in journey.touchpoints}
        summaries = {}

        for model_type, rows in models.items():
            channel_breakdown: dict[str, float] = defaultdict(float)
            rows_by_conversion: dict[str, list[AttributionModel]] = defaultdict(list)
            credited = set()

            for row in rows:
                touch = touches_by_id.get(row.touchpoint_id)
                channel = touch.channel if touch else "unknown"
                channel_breakdown[channel] += row.conversion_value
                rows_by_conversion[
                    row.calculation_metadata.conversion_touchpoint_id
                ].append(row)
                if row.attribution_percentage > 0:
                    credited.add(row.touchpoint_id)

            confidences = [
                self._calculate_confidence(conversion_rows, touches_by_id)
                for conversion_rows in rows_by_conversion.values()
            ]

            summaries[model_type] = ModelSummary(
                model_type=model_type,
                total_conversion_value=round(
                    sum(row.conversion_value for row in rows), 2
                ),
                channel_breakdown={
                    channel: round(value, 2)
                    for channel, value in channel_breakdown.items()
                },
                model_confidence=(
                    round(sum(confidences) / len(confidences), 4)
                    if confidences
                    else 0.0
                ),
                credited_touchpoints=len(credited),
            )

        return summaries

    def compare_attribution_models(
        self,
        journey: Journey,
        models: GeneratedModels | None = None,
    ) -> ModelComparison:
        """Compare channel credit across models and flag model-sensitive channels."""
        if not journey.has_conversions:
            return ModelComparison()

        if models is None:
            models = self.generate_attribution_models(journey)

        summary = self.journey_attribution_summary(journey, models)
        channels = list(journey.channels)
        for model_summary in summary.values():
            for channel in model_summary.channel_breakdown:
                if channel not in channels:
                    channels.append(channel)

        channel_comparison: dict[str, dict[ModelType, ChannelModelCredit]] = {}
        for channel in channels:
            channel_comparison[channel] = {}
            for model_type, model_summary in summary.items():
                credit = model_summary.channel_breakdown.get(channel, 0.0)
                total = model_summary.total_conversion_value
                percentage = credit / total * 100 if total > 0 else 0.0
                channel_comparison[channel][model_type] = ChannelModelCredit(
                    attribution_credit=credit,
                    percentage=min(round(percentage, 2), 100.0),
                )

        return ModelComparison(
            channel_comparison=channel_comparison,
            model_summary=summary,
            recommendations=self._recommend_from_comparison(channel_comparison),
        )

    def calculate_multi_touch_attribution(
        self, journey: Journey
    ) -> list[MultiTouchCredit]:
        """Blend time-decay and position-based credit over the whole journey."""
        path = list(journey.touchpoints)
        if not path:
            return []

        time_weights = path_percentages(path, ModelType.TIME_DECAY, self._context)
        position_weights = path_percentages(
            path, ModelType.POSITION_BASED, self._context
        )

        time_share = self.config.multi_touch_time_weight
        position_share = self.config.multi_touch_position_weight
        blended = finalize_percentages(
            [
                time_share * time_weight + position_share * position_weight
                for time_weight, position_weight in zip(time_weights, position_weights)
            ]
        )

        return [
            MultiTouchCredit(
                touchpoint=touch,
                attribution_percentage=percentage,
                time_weight=time_weight,
                position_weight=position_weight,
            )
            for touch, percentage, time_weight, position_weight in zip(
                path, blended, time_weights, position_weights
            )
        ]

    def cross_channel_metrics(
        self,
        journey: Journey,
        model_type: ModelTypeLike = ModelType.LINEAR,
    ) -> CrossChannelMetrics:
        """Channel diversity, dominant channel and credit concentration."""
        model_type = ModelType.parse(model_type)
        diversity = len(journey.channels)

        summary = self.journey_attribution_summary(
            journey, self.generate_attribution_models(journey, [model_type])
        ).get(model_type)
        breakdown = summary.channel_breakdown if summary else {}
        total = sum(breakdown.values())
        if total <= 0:
            return CrossChannelMetrics(
                model_type=model_type, channel_diversity=diversity
            )

        return CrossChannelMetrics(
            model_type=model_type,
            channel_diversity=diversity,
            # max keeps the earliest-appearing channel on ties
            dominant_channel=max(breakdown, key=lambda channel: breakdown[channel]),
            attribution_concentration=min(
                round(sum((value / total) ** 2 for value in breakdown.values()), 4),
                1.0,
            ),
        )

    def identify_top_conversion_paths(
        self, journeys: Iterable[Journey], min_occurrences: int = 1
    ) -> list[ConversionPath]:
        """Identify the channel sequences that most often lead to conversions.

        Args:
            journeys: Journey snapshots to analyze
            min_occurrences: Minimum occurrences to include a sequence

        Returns:
            Conversion paths sorted by total conversion value
        """
        performance: dict[tuple[str, ...], dict[str, float]] = {}

        for journey in journeys:
            for path in self._credited_paths(journey):
                if not path.is_closed:
                    continue
                sequence = tuple(touch.channel for touch in path.touchpoints)
                perf = performance.setdefault(
                    sequence, {"occurrences": 0, "total_value": 0.0}
                )
                perf["occurrences"] += 1
                perf["total_value"] += path.conversion.resolve_conversion_value(
                    self.config.default_conversion_value
                )

        top_paths = [
            ConversionPath(
                sequence=sequence,
                occurrences=int(perf["occurrences"]),
                total_conversion_value=round(perf["total_value"], 2),
                avg_conversion_value=round(
                    perf["total_value"] / perf["occurrences"], 2
                ),
            )
            for sequence, perf in performance.items()
            if perf["occurrences"] >= min_occurrences
        ]

        return sorted(
            top_paths,
            key=lambda p: (-p.total_conversion_value, -p.occurrences, p.label),
        )

    def summarize_journeys(
        self,
        journeys: Iterable[Journey],
        model_type: ModelTypeLike = ModelType.LINEAR,
    ) -> dict[str, Any]:
        """Get high-level attribution summary across many journeys."""
        model_type = ModelType.parse(model_type)
        journeys = list(journeys)
        if not journeys:
            return {}

        channel_value: dict[str, float] = defaultdict(float)
        channel_conversions: dict[str, int] = defaultdict(int)
        converting_journeys = 0
        total_conversions = 0
        total_value = 0.0

        for journey in journeys:
            summary = self.journey_attribution_summary(
                journey, self.generate_attribution_models(journey, [model_type])
            ).get(model_type)
            if summary is None:
                continue

            converting_journeys += 1
            total_conversions += len(journey.conversions)
            total_value += summary.total_conversion_value
            for channel, value in summary.channel_breakdown.items():
                channel_value[channel] += value
                if value > 0:
                    channel_conversions[channel] += 1

        channel_summary = {}
        for channel, value in channel_value.items():
            conversions = channel_conversions.get(channel, 0)
            channel_summary[channel] = {
                "attributed_value": round(value, 2),
                "conversions": conversions,
                "avg_value_per_conversion": round(value / conversions, 2)
                if conversions > 0
                else 0.0,
                "value_share": round(value / total_value * 100, 2)
                if total_value > 0
                else 0.0,
            }

        return {
            "period_summary": {
                "model_type": model_type.value,
                "total_journeys": len(journeys),
                "converting_journeys": converting_journeys,
                "total_conversions": total_conversions,
                "total_attributed_value": round(total_value, 2),
            },
            "channel_performance": channel_summary,
            "top_channels_by_value": sorted(
                channel_summary.items(),
                key=lambda item: (-item[1]["attributed_value"], item[0]),
            )[:5],
        }

    def journey_metrics(self, journeys: Iterable[Journey]) -> JourneyMetrics:
        """Path length, conversion velocity and drop-off points across journeys.

        Velocity is measured from the first credited touchpoint of each
        conversion path to the conversion, so it respects the lookback window.
        Drop-offs count the last channel of every trailing unconverted path.
        """
        journeys = list(journeys)
        if not journeys:
            return JourneyMetrics()

        converting_journeys = 0
        path_lengths = []
        velocities_hours = []
        drop_offs: Counter[str] = Counter()

        for journey in journeys:
            if journey.has_conversions:
                converting_journeys += 1
            for path in self._credited_paths(journey):
                if path.is_closed:
                    path_lengths.append(len(path.touchpoints))
                    first_touch = path.touchpoints[0]
                    elapsed = path.conversion.occurred_at - first_touch.occurred_at
                    velocities_hours.append(elapsed.total_seconds() / 3600)
                else:
                    drop_offs[path.touchpoints[-1].channel] += 1

        total_touchpoints = sum(len(journey.touchpoints) for journey in journeys)
        logger.debug(
            f"Journey metrics over {len(journeys)} journeys: "
            f"{len(path_lengths)} conversion paths, {sum(drop_offs.values())} drop-offs"
        )

        return JourneyMetrics(
            total_journeys=len(journeys),
            converting_journeys=converting_journeys,
            avg_touchpoints_per_journey=round(total_touchpoints / len(journeys), 2),
            avg_touchpoints_to_conversion=(
                round(sum(path_lengths) / len(path_lengths), 2) if path_lengths else 0.0
            ),
            avg_conversion_velocity_hours=(
                round(sum(velocities_hours) / len(velocities_hours), 2)
                if velocities_hours
                else None
            ),
            drop_off_channels=dict(
                sorted(drop_offs.items(), key=lambda item: (-item[1], item[0]))
            ),
        )

    def channel_combination_analysis(
        self,
        journeys: Iterable[Journey],
        min_journeys: int = 1,
        top_n: int = 10,
    ) -> list[ChannelCombination]:
        """Which sets of channels appear together and how often they convert.

        Args:
            journeys: Journey snapshots to analyze
            min_journeys: Minimum journeys sharing a combination to include it
            top_n: Maximum number of combinations returned

        Returns:
            Combinations sorted by journey count, then conversion rate
        """
        counts: dict[tuple[str, ...], list[int]] = {}

        for journey in journeys:
            if not journey.touchpoints:
                continue
            combination = tuple(sorted(journey.channels))
            entry = counts.setdefault(combination, [0, 0])
            entry[0] += 1
            if journey.has_conversions:
                entry[1] += 1

        combinations = [
            ChannelCombination(
                channels=channels,
                journeys=seen,
                converting_journeys=converted,
                conversion_rate=round(converted / seen, 4),
            )
            for channels, (seen, converted) in counts.items()
            if seen >= min_journeys
        ]

        return sorted(
            combinations,
            key=lambda c: (-c.journeys, -c.conversion_rate, c.label),
        )[:top_n]

    def _credited_paths(self, journey: Journey) -> list[CreditedPath]:
        return split_credited_paths(journey, self.config.lookback_window_days)

    def _calculate_confidence(
        self,
        rows: Sequence[AttributionModel],
        touches_by_id: Mapping[str, Touchpoint],
    ) -> float:
        """Confidence score for one conversion's attribution."""
        if not rows:
            return 0.0

        # Base confidence starts at 0.5
        confidence = 0.5

        # More touchpoints, more evidence (up to 0.3 boost)
        confidence += min(0.3, len(rows) * 0.05)

        # Evenly spread credit (up to 0.2 boost)
        confidence += 0.2 * _evenness([row.attribution_percentage for row in rows])

        # Quick bounces
        if len(rows) <= QUICK_PATH_MAX_TOUCHES:
            times = [
                touches_by_id[row.touchpoint_id].occurred_at
                for row in rows
                if row.touchpoint_id in touches_by_id
            ]
            if times and (max(times) - min(times)).total_seconds() < QUICK_PATH_SECONDS:
                confidence -= 0.1

        return max(0.0, min(1.0, confidence))

    def _recommend_from_comparison(
        self,
        channel_comparison: Mapping[str, Mapping[ModelType, ChannelModelCredit]],
    ) -> list[ModelRecommendation]:
        threshold = self.config.comparison_spread_threshold
        recommendations = []

        for channel, by_model in channel_comparison.items():
            if len(by_model) < 2:
                continue

            ordered = list(by_model.items())
            lowest_model, lowest = min(ordered, key=lambda item: item[1].percentage)
            highest_model, highest = max(ordered, key=lambda item: item[1].percentage)
            spread = round(highest.percentage - lowest.percentage, 2)

            if spread >= threshold:
                recommendations.append(
                    ModelRecommendation(
                        channel=channel,
                        lowest_model=lowest_model,
                        highest_model=highest_model,
                        spread=spread,
                        message=(
                            f"{channel} receives between {lowest.percentage:.1f}% "
                            f"({lowest_model.value}) and {highest.percentage:.1f}% "
                            f"({highest_model.value}) of credit depending on the "
                            "attribution model; validate its contribution before "
                            "shifting budget"
                        ),
                    )
                )

        return sorted(recommendations, key=lambda r: (-r.spread, r.channel))


def _evenness(percentages: Sequence[float]) -> float:
    """Normalised Shannon entropy of a credit distribution (0 = one winner)."""
    if len(percentages) < 2:
        return 0.0

    total = sum(percentages)
    if total <= 0:
        return 0.0

    entropy = 0.0
    for percentage in percentages:
        share = percentage / total
        if share > 0:
            entropy -= share * math.log(share)
    return min(1.0, entropy / math.log(len(percentages)))
