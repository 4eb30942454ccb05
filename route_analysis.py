"""
Route analysis orchestration.

Each route moves through NotAnalyzed -> Analyzing(partial) -> Analyzed or
Failed. The analyzer owns those transitions and reports each one to its
observers as (route, state). Observers are plain callables; one that
raises is logged and skipped, it never affects analysis.
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from image_risk import DEFAULT_CONCURRENCY, average_risk_score, score_images
from models import (
    Analyzed,
    Analyzing,
    Failed,
    ImageScoreResult,
    NotAnalyzed,
    Route,
    RouteAnalysisState,
    WeatherData,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ANALYSIS_FAILED",
    "Analyzed",
    "Analyzing",
    "Failed",
    "NotAnalyzed",
    "RouteAnalysisState",
    "RouteAnalyzer",
    "weather_context_hint",
]

ANALYSIS_FAILED = "Analysis failed"

Observer = Callable[[Route, RouteAnalysisState], None]
ContextScoreFn = Callable[..., Awaitable[ImageScoreResult]]


def weather_context_hint(weather: Optional[WeatherData]) -> str:
    """Oracle context line describing current conditions at the source."""
    if weather is None:
        return ""
    return (
        f"Current weather conditions: {weather.condition}, {weather.temperature}°C, "
        f"{weather.description}. Wind speed: {weather.wind_speed} m/s. "
        f"Humidity: {weather.humidity}%."
    )


class RouteAnalyzer:
    """Scores each route's street view images and publishes state changes.

    ``scorer`` is called as ``scorer(url, context_hint=...)`` and must
    return an awaitable ImageScoreResult.
    """

    def __init__(
        self,
        scorer: ContextScoreFn,
        concurrency: int = DEFAULT_CONCURRENCY,
        observers: Optional[Iterable[Observer]] = None,
    ):
        self.scorer = scorer
        self.concurrency = concurrency
        self.observers: List[Observer] = list(observers or [])

    def add_observer(self, observer: Observer):
        self.observers.append(observer)

    def _publish(self, route: Route, state: RouteAnalysisState):
        route.analysis = state
        for observer in self.observers:
            try:
                observer(route, state)
            except Exception:
                logger.warning(
                    "Observer %r raised for route %s", observer, route.id, exc_info=True
                )

    def begin(self, route: Route):
        self._publish(route, Analyzing())

    async def analyze(self, route: Route, context_hint: str = "") -> RouteAnalysisState:
        """Score ``route``'s images and leave it Analyzed or Failed."""
        if not isinstance(route.analysis, Analyzing):
            self.begin(route)

        refs = [img.image_url for img in route.street_view_images]
        score = functools.partial(self.scorer, context_hint=context_hint)

        def on_progress(scores: List[int]):
            if len(scores) < len(refs):
                self._publish(route, Analyzing(partial=tuple(scores)))

        try:
            batch = await score_images(refs, score, self.concurrency, on_progress)
        except Exception:
            logger.error("Error analyzing route %s", route.id, exc_info=True)
            self._publish(route, Failed(reason=ANALYSIS_FAILED))
            return route.analysis

        self._publish(route, Analyzed(
            scores=tuple(batch.scores),
            explanations=tuple(batch.explanations),
            precautions=tuple(batch.precautions),
            average=average_risk_score(batch.scores),
        ))
        logger.info(
            "Route %s analyzed: %d images, average risk %d",
            route.id, len(batch), route.analysis.average,
        )
        return route.analysis

    async def analyze_all(self, routes: Sequence[Route]) -> List[Route]:
        """Analyze every route that has imagery, concurrently.

        All eligible routes enter Analyzing before any scoring starts.
        Routes without images are left NotAnalyzed.
        """
        eligible = [r for r in routes if r.street_view_images]
        for route in eligible:
            self.begin(route)

        await asyncio.gather(*(
            self.analyze(route, weather_context_hint(route.weather)) for route in eligible
        ))
        return list(routes)
