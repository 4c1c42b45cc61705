"""Event helpers that build telemetry events and hand them to the pipeline.

``Analytics`` stamps every event with the visitor, session and page URL and
offers one helper per interaction the landing page reports. The scroll and
time-on-page trackers turn continuous signals into one-shot milestone
events.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Iterable

from pagelab.telemetry.events import EventType, EventValue, TelemetryEvent
from pagelab.telemetry.pipeline import TelemetryPipeline

logger = logging.getLogger(__name__)


class Analytics:
    """Per-page event emitter.

    Args:
        pipeline: Queue the events go to.
        visitor_id: Long-lived visitor token.
        session_id: Per-session token.
        page_url: URL of the page the events belong to.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        pipeline: TelemetryPipeline,
        *,
        visitor_id: str,
        session_id: str,
        page_url: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pipeline = pipeline
        self.visitor_id = visitor_id
        self.session_id = session_id
        self.page_url = page_url
        self._clock = clock
        self._loaded_at = clock()

    def track_event(
        self,
        event_type: EventType | str,
        event_data: dict[str, EventValue] | None = None,
    ) -> TelemetryEvent:
        name = event_type.value if isinstance(event_type, EventType) else event_type
        event = TelemetryEvent(
            event_type=name,
            event_data=event_data,
            session_id=self.session_id,
            visitor_id=self.visitor_id,
            page_url=self.page_url,
        )
        self._pipeline.enqueue(event)
        return event

    def track_page_view(self, path: str, referrer: str | None = None) -> TelemetryEvent:
        return self.track_event(EventType.PAGE_VIEW, {"path": path, "referrer": referrer or None})

    def track_cta_click(self, cta_name: str, cta_location: str) -> TelemetryEvent:
        return self.track_event(EventType.CTA_CLICK, {"ctaName": cta_name, "ctaLocation": cta_location})

    def track_section_view(self, section_id: str) -> TelemetryEvent:
        return self.track_event(EventType.SECTION_VIEW, {"sectionId": section_id})

    def track_scroll_depth(self, depth: int) -> TelemetryEvent:
        return self.track_event(EventType.SCROLL_DEPTH, {"depth": depth})

    def track_time_on_page(self) -> TelemetryEvent:
        seconds = _round_half_up(self._clock() - self._loaded_at)
        return self.track_event(EventType.TIME_ON_PAGE, {"seconds": seconds})

    def track_form_start(self, form_name: str) -> TelemetryEvent:
        return self.track_event(EventType.FORM_START, {"formName": form_name})

    def track_form_submit(self, form_name: str, success: bool) -> TelemetryEvent:
        return self.track_event(EventType.FORM_SUBMIT, {"formName": form_name, "success": success})

    def track_demo_modal_open(self, source: str) -> TelemetryEvent:
        return self.track_event(EventType.DEMO_MODAL_OPEN, {"source": source})

    def track_demo_modal_close(self, submitted: bool) -> TelemetryEvent:
        return self.track_event(EventType.DEMO_MODAL_CLOSE, {"submitted": submitted})

    def track_script_scan(self, passed: bool, score: float) -> TelemetryEvent:
        return self.track_event(EventType.SCRIPT_SCAN, {"passed": passed, "score": score})

    def track_roi_calculate(self, team_size: int, annual_savings: float) -> TelemetryEvent:
        return self.track_event(
            EventType.ROI_CALCULATE, {"teamSize": team_size, "annualSavings": annual_savings},
        )

    def track_blueprint_download(self, blueprint: str) -> TelemetryEvent:
        return self.track_event(EventType.BLUEPRINT_DOWNLOAD, {"blueprint": blueprint})


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def scroll_percent(scroll_top: float, scroll_height: float, viewport_height: float) -> int:
    """Percentage of the scrollable distance covered; 0 when nothing scrolls."""
    scrollable = scroll_height - viewport_height
    if scrollable <= 0:
        return 0
    return _round_half_up(scroll_top / scrollable * 100)


class ScrollDepthTracker:
    """Emits ``scroll_depth`` once per milestone, in ascending order.

    The high-water mark only moves up: scrolling back above a milestone and
    down again never re-fires it. A jump past several milestones fires each
    of them.
    """

    def __init__(self, analytics: Analytics, milestones: Iterable[int] = (25, 50, 75, 100)) -> None:
        self._analytics = analytics
        self._milestones = sorted(milestones)
        self._last_milestone = 0
        self._frame_pending = False
        self._latest: tuple[float, float, float] | None = None

    @property
    def last_milestone(self) -> int:
        return self._last_milestone

    def observe(self, percent: int) -> list[int]:
        """Feed one scroll percentage; returns the milestones fired by it."""
        fired = [m for m in self._milestones if self._last_milestone < m <= percent]
        for milestone in fired:
            self._last_milestone = milestone
            self._analytics.track_scroll_depth(milestone)
        return fired

    def on_scroll(self, scroll_top: float, scroll_height: float, viewport_height: float) -> None:
        """Scroll listener, throttled to one evaluation per loop iteration.

        Only the geometry seen when the frame runs is evaluated.
        """
        self._latest = (scroll_top, scroll_height, viewport_height)
        if self._frame_pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._on_frame()
            return
        self._frame_pending = True
        loop.call_soon(self._on_frame)

    def _on_frame(self) -> None:
        self._frame_pending = False
        if self._latest is not None:
            self.observe(scroll_percent(*self._latest))


class TimeOnPageTracker:
    """Emits ``time_on_page`` at fixed offsets after ``start()``, each once.

    Args:
        analytics: Event emitter.
        milestones: Offsets in seconds.
        clock: Monotonic clock used to compute elapsed time.
    """

    def __init__(
        self,
        analytics: Analytics,
        milestones: Iterable[float] = (30, 60, 120, 300),
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._analytics = analytics
        self._milestones = sorted(milestones)
        self._clock = clock
        self._mounted_at: float | None = None
        self._fired: set[float] = set()
        self._handles: list[asyncio.TimerHandle] = []

    @property
    def fired(self) -> list[float]:
        return sorted(self._fired)

    def start(self) -> None:
        """Mount: record the start time and arm one timer per milestone."""
        self._mounted_at = self._clock()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; time-on-page milestones need check()")
            return
        self._handles = [loop.call_later(m, self._fire, m) for m in self._milestones]

    def stop(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles = []

    def check(self) -> list[float]:
        """Fire every milestone already elapsed but not yet emitted."""
        if self._mounted_at is None:
            return []
        elapsed = self._clock() - self._mounted_at
        due = [m for m in self._milestones if m <= elapsed and m not in self._fired]
        for milestone in due:
            self._fire(milestone)
        return due

    def _fire(self, milestone: float) -> None:
        if milestone in self._fired or self._mounted_at is None:
            return
        self._fired.add(milestone)
        seconds = _round_half_up(self._clock() - self._mounted_at)
        self._analytics.track_event(EventType.TIME_ON_PAGE, {"seconds": seconds})
