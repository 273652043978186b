"""
Weekly activity analyzer.

Runs every catalog entry through its category's evaluator for one
character. Pure orchestration: no I/O, and identical inputs with the same
``now`` produce identical result lists.
"""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from app.features.weekly_tracker.domain.catalog import DEFAULT_CATALOG
from app.features.weekly_tracker.domain.models import (
    ActivityCategory,
    ActivityCompletionResult,
    CategoryFetchResult,
    DataSource,
    TrackedActivityDefinition,
)
from app.features.weekly_tracker.domain.payloads import decode_payload
from app.features.weekly_tracker.services.evaluators import DEFAULT_EVALUATORS, ActivityEvaluator
from app.features.weekly_tracker.services.reset_clock import (
    DEFAULT_SCHEDULE,
    ResetSchedule,
    current_reset_boundary,
    to_utc,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ActivityData = Mapping[DataSource, CategoryFetchResult | tuple[Any, str | None]]


def _as_fetch_result(entry: CategoryFetchResult | tuple[Any, str | None]) -> CategoryFetchResult:
    if isinstance(entry, CategoryFetchResult):
        return entry
    payload, error = entry
    return CategoryFetchResult(payload=payload, error=error)


class WeeklyActivityAnalyzer:
    """Produce the ordered completion list for a character from its fetched data."""

    def __init__(
        self,
        catalog: Sequence[TrackedActivityDefinition] = DEFAULT_CATALOG,
        evaluators: Mapping[ActivityCategory, ActivityEvaluator] | None = None,
        schedule: ResetSchedule = DEFAULT_SCHEDULE,
    ):
        self.catalog = tuple(catalog)
        self.evaluators = dict(evaluators or DEFAULT_EVALUATORS)
        self.schedule = schedule

        registered = {category.value for category in self.evaluators}
        missing = sorted({d.category.value for d in self.catalog} - registered)
        if missing:
            raise ValueError(f"No evaluator registered for categories: {', '.join(missing)}")

    @property
    def required_sources(self) -> tuple[DataSource, ...]:
        """Data sources the catalog reads, in first-use order."""
        sources: dict[DataSource, None] = {}
        for definition in self.catalog:
            for source in definition.sources:
                sources.setdefault(source)
        return tuple(sources)

    def analyze(
        self,
        character_id: int | str,
        data: ActivityData,
        now: datetime | None = None,
    ) -> list[ActivityCompletionResult]:
        """
        Evaluate every catalog activity for one character.

        Args:
            character_id: Character the results belong to
            data: Per data source fetch outcome; a missing source is treated as a null payload
            now: Evaluation instant (defaults to the current time)

        Returns:
            list[ActivityCompletionResult]: One result per catalog entry, in catalog order
        """
        now = to_utc(now)
        reset_boundary = current_reset_boundary(now, self.schedule)

        settled = {source: _as_fetch_result(entry) for source, entry in data.items()}
        payloads = {
            source: decode_payload(source, result.payload)
            for source, result in settled.items()
            if not result.is_error
        }

        results = [
            self._analyze_activity(character_id, definition, settled, payloads, reset_boundary, now)
            for definition in self.catalog
        ]

        logger.debug(
            "Weekly activities analyzed",
            character_id=character_id,
            reset_boundary=reset_boundary.isoformat(),
            completed=sum(1 for r in results if r.completed),
            errored=sum(1 for r in results if r.error),
            total=len(results),
        )
        return results

    def _analyze_activity(
        self,
        character_id: int | str,
        definition: TrackedActivityDefinition,
        settled: Mapping[DataSource, CategoryFetchResult],
        payloads: Mapping[DataSource, Any],
        reset_boundary: datetime,
        now: datetime,
    ) -> ActivityCompletionResult:
        base = {
            "id": f"{character_id}_{definition.id}",
            "activity_id": definition.id,
            "name": definition.name,
            "category": definition.category,
            "reset_day": definition.reset_day,
        }

        errors: list[str] = []
        for source in definition.sources:
            result = settled.get(source)
            if result is not None and result.is_error and result.error not in errors:
                errors.append(result.error)

        if errors:
            # Never evaluate on partial data
            return ActivityCompletionResult(
                **base,
                description=definition.render_description(),
                error="; ".join(errors),
            )

        outcome = self.evaluators[definition.category].evaluate(
            definition, payloads, reset_boundary, now
        )
        context = outcome.detail.model_dump() if outcome.detail is not None else {}
        return ActivityCompletionResult(
            **base,
            description=definition.render_description(context),
            completed=outcome.completed,
            progress=1 if outcome.completed else 0,
            max_progress=1,
            detail=outcome.detail,
        )
