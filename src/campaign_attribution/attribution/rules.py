"""Credit distribution rules for each attribution model.

Every rule receives a credited path (chronologically ordered touchpoints whose
last element is the credited event) and returns raw, non-negative weights of
any scale. ``path_percentages`` turns those weights into percentages that sum
to 100 under one rounding policy shared by all models:

* each share is rounded to 2 decimal places;
* when the rounded total drifts from 100 by more than ``ROUNDING_TOLERANCE``
  the residue is moved onto the largest share (latest position on ties).

Linear credit over three touchpoints therefore stays at 33.33 each, while long
paths never drift further than the tolerance.
"""

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from campaign_attribution.attribution.models import ModelType, Touchpoint
from campaign_attribution.core.config import AttributionConfig

ROUNDING_TOLERANCE = 0.05
PERCENTAGE_PRECISION = 2
# Smallest share a data-driven touchpoint may receive.
DATA_DRIVEN_FLOOR = 0.01

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class PathContext:
    """Parameters shared by the rules while scoring one path."""

    config: AttributionConfig
    channel_performance: Mapping[str, float] = field(default_factory=dict)
    data_driven_strategy: "WeightRule | None" = None


WeightRule = Callable[[Sequence[Touchpoint], PathContext], list[float]]


def first_touch_weights(path: Sequence[Touchpoint], context: PathContext) -> list[float]:
    return [1.0] + [0.0] * (len(path) - 1)


def last_touch_weights(path: Sequence[Touchpoint], context: PathContext) -> list[float]:
    """Credit the last touchpoint before the conversion.

    The conversion itself is credited only when nothing precedes it.
    """
    weights = [0.0] * len(path)
    credited = len(path) - 1
    for index in range(len(path) - 1, -1, -1):
        if not path[index].is_conversion:
            credited = index
            break
    weights[credited] = 1.0
    return weights


def linear_weights(path: Sequence[Touchpoint], context: PathContext) -> list[float]:
    return [1.0] * len(path)


def time_decay_weights(path: Sequence[Touchpoint], context: PathContext) -> list[float]:
    """Exponential decay: weight = 2^(-days_before_credited_event / half_life)."""
    half_life_days = context.config.time_decay_half_life_days
    credited_at = path[-1].occurred_at

    weights = []
    for touch in path:
        days_before = (credited_at - touch.occurred_at).total_seconds() / SECONDS_PER_DAY
        weights.append(math.pow(2, -max(days_before, 0.0) / half_life_days))
    return weights


def position_based_weights(
    path: Sequence[Touchpoint], context: PathContext
) -> list[float]:
    """First and last touches share the boundary weight, the middle splits the rest."""
    first_weight = context.config.position_based_first_weight
    last_weight = context.config.position_based_last_weight

    if len(path) == 1:
        return [1.0]

    if len(path) == 2:
        return [first_weight, last_weight]

    middle_touches = len(path) - 2
    weight_per_middle = max(1.0 - first_weight - last_weight, 0.0) / middle_touches
    return [first_weight] + [weight_per_middle] * middle_touches + [last_weight]


def custom_weights(path: Sequence[Touchpoint], context: PathContext) -> list[float]:
    """Linear base weights with a multiplier on high-value touchpoints."""
    config = context.config
    high_value_types = set(config.custom_high_value_touchpoint_types)

    weights = []
    for touch in path:
        weight = config.custom_touchpoint_type_weights.get(touch.touchpoint_type, 1.0)
        if touch.touchpoint_type in high_value_types:
            weight *= config.custom_high_value_multiplier
        weights.append(weight)

    if sum(weights) <= 0:
        return linear_weights(path, context)
    return weights


def composite_data_driven_weights(
    path: Sequence[Touchpoint], context: PathContext
) -> list[float]:
    """Blend of position, recency and historical channel performance.

    Each signal is normalised to a distribution over the path before blending,
    so the configured weights express the relative say of each signal.
    Channels without history score 1.0.
    """
    config = context.config
    position = _normalise(position_based_weights(path, context))
    recency = _normalise(time_decay_weights(path, context))
    channel = _normalise(
        [max(context.channel_performance.get(touch.channel, 1.0), 0.0) for touch in path]
    )

    return [
        config.data_driven_position_weight * position[i]
        + config.data_driven_recency_weight * recency[i]
        + config.data_driven_channel_weight * channel[i]
        for i in range(len(path))
    ]


def data_driven_weights(path: Sequence[Touchpoint], context: PathContext) -> list[float]:
    strategy = context.data_driven_strategy or composite_data_driven_weights
    return strategy(path, context)


MODEL_RULES: dict[ModelType, WeightRule] = {
    ModelType.FIRST_TOUCH: first_touch_weights,
    ModelType.LAST_TOUCH: last_touch_weights,
    ModelType.LINEAR: linear_weights,
    ModelType.TIME_DECAY: time_decay_weights,
    ModelType.POSITION_BASED: position_based_weights,
    ModelType.DATA_DRIVEN: data_driven_weights,
    ModelType.CUSTOM: custom_weights,
}


def path_percentages(
    path: Sequence[Touchpoint], model_type: ModelType, context: PathContext
) -> list[float]:
    """Percentages (summing to 100) for every touchpoint of a credited path."""
    if not path:
        return []

    if len(path) == 1:
        return [100.0]

    weights = MODEL_RULES[model_type](path, context)
    floor = DATA_DRIVEN_FLOOR if model_type == ModelType.DATA_DRIVEN else 0.0
    return finalize_percentages(weights, floor=floor)


def finalize_percentages(weights: Sequence[float], floor: float = 0.0) -> list[float]:
    """Normalise raw weights to percentages and apply the rounding policy."""
    if not weights:
        return []

    cleaned = [max(weight, 0.0) for weight in weights]
    total = sum(cleaned)
    if total <= 0:
        cleaned = [1.0] * len(cleaned)
        total = float(len(cleaned))

    shares = [round(100.0 * weight / total, PERCENTAGE_PRECISION) for weight in cleaned]
    if floor > 0:
        shares = [max(share, floor) for share in shares]

    residue = round(100.0 - sum(shares), PERCENTAGE_PRECISION)
    if abs(residue) > ROUNDING_TOLERANCE:
        largest = max(range(len(shares)), key=lambda i: (shares[i], i))
        shares[largest] = round(shares[largest] + residue, PERCENTAGE_PRECISION)

    return shares


def _normalise(weights: Sequence[float]) -> list[float]:
    total = sum(weights)
    if total <= 0:
        return [1.0 / len(weights)] * len(weights)
    return [weight / total for weight in weights]
