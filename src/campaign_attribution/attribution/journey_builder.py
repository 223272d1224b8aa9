"""Journey snapshot builder for touchpoint records handed over by the store."""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
import pandas as pd
from pydantic import ValidationError

from campaign_attribution.attribution.models import Journey, Touchpoint
from campaign_attribution.core.exceptions import InvalidTouchpointError

logger = logging.getLogger(__name__)

FIELD_ALIASES = {
    "journeyId": "journey_id",
    "touchpointType": "touchpoint_type",
    "occurredAt": "occurred_at",
}
TOUCHPOINT_FIELDS = {"id", "journey_id", "channel", "touchpoint_type", "occurred_at"}

MEDIUM_CHANNELS = {
    "cpc": "paid_search",
    "ppc": "paid_search",
    "organic": "organic_search",
    "social": "social_media",
    "email": "email",
    "referral": "referral",
    "display": "display",
}


def classify_channel(source: str | None, medium: str | None) -> str:
    """Map a traffic source/medium pair onto a marketing channel."""
    medium = (medium or "").strip().lower()
    if medium in MEDIUM_CHANNELS:
        return MEDIUM_CHANNELS[medium]

    source = (source or "").strip().lower()
    return "organic_search" if "google" in source else "direct"


class JourneyBuilder:
    """Builds immutable journey snapshots from plain touchpoint records."""

    def __init__(self, strict: bool = False):
        """Initialize journey builder.

        Args:
            strict: Raise on malformed records instead of skipping them
        """
        self.strict = strict

    def build_journeys(self, records: Iterable[Mapping[str, Any]]) -> dict[str, Journey]:
        """Group touchpoint records into journeys.

        Args:
            records: Mappings with ``id``, ``journey_id``, ``channel``,
                ``touchpoint_type``, ``occurred_at`` and ``metadata``
                (camelCase keys are accepted too)

        Returns:
            Journeys keyed by journey id, in order of first appearance
        """
        touches_by_journey: dict[str, list[Touchpoint]] = {}
        skipped = 0

        seen_ids: dict[str, set[str]] = {}

        for record in records:
            touch = self._to_touchpoint(record)
            if touch is None:
                skipped += 1
                continue

            journey_seen = seen_ids.setdefault(touch.journey_id, set())
            if touch.id in journey_seen:
                if self.strict:
                    raise InvalidTouchpointError(
                        f"Duplicate touchpoint {touch.id} "
                        f"in journey {touch.journey_id}",
                        record=dict(record),
                    )
                logger.warning(
                    f"Skipping duplicate touchpoint {touch.id} "
                    f"in journey {touch.journey_id}"
                )
                continue
            journey_seen.add(touch.id)

            touches_by_journey.setdefault(touch.journey_id, []).append(touch)

        if skipped:
            logger.warning(f"Skipped {skipped} malformed touchpoint records")

        journeys = {
            journey_id: Journey(journey_id=journey_id, touchpoints=touches)
            for journey_id, touches in touches_by_journey.items()
        }
        logger.info(
            f"Built {len(journeys)} journeys from "
            f"{sum(len(t) for t in touches_by_journey.values())} touchpoints"
        )
        return journeys

    def build_journey(
        self, journey_id: str, records: Iterable[Mapping[str, Any]]
    ) -> Journey:
        """Build one journey; an unknown id yields an empty snapshot."""
        journeys = self.build_journeys(records)
        return journeys.get(journey_id, Journey(journey_id=journey_id))

    def build_journeys_from_frame(self, frame: pd.DataFrame) -> dict[str, Journey]:
        """Group a tabular touchpoint export into journeys.

        Columns other than the touchpoint fields are folded into each
        touchpoint's metadata; empty cells are dropped.
        """
        if frame.empty:
            return {}

        frame = frame.rename(columns=FIELD_ALIASES)
        records = []
        for row in frame.to_dict(orient="records"):
            record: dict[str, Any] = {}
            cell = row.pop("metadata", None)
            metadata = dict(cell) if isinstance(cell, Mapping) else {}
            for key, value in row.items():
                value = _to_python(value)
                if value is None:
                    continue
                if key in TOUCHPOINT_FIELDS or key in ("source", "medium"):
                    record[key] = value
                else:
                    metadata[key] = value
            record["metadata"] = metadata
            records.append(record)

        return self.build_journeys(records)

    def _to_touchpoint(self, record: Mapping[str, Any]) -> Touchpoint | None:
        data = {FIELD_ALIASES.get(key, key): value for key, value in record.items()}

        if not data.get("channel"):
            data["channel"] = classify_channel(data.get("source"), data.get("medium"))
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        if data.get("journey_id") is not None:
            data["journey_id"] = str(data["journey_id"])

        try:
            return Touchpoint(
                **{key: value for key, value in data.items() if key in TOUCHPOINT_FIELDS},
                metadata=data.get("metadata") or {},
            )
        except ValidationError as e:
            if self.strict:
                raise InvalidTouchpointError(
                    f"Invalid touchpoint record: {e}", record=dict(record)
                ) from e
            logger.warning(f"Skipping invalid touchpoint record {data.get('id')}: {e}")
            return None


def _to_python(value: Any) -> Any:
    """Convert pandas/numpy cell values to plain Python values (None for empty)."""
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value
