"""Page runtime: the composition the page's components talk to.

One ``PageRuntime`` per page life wires identity, the experiment catalog,
the assignment engine, the telemetry pipeline and the milestone trackers
together, the way the landing page's hooks do:

    runtime = PageRuntime(page_url="https://example.com/")
    await runtime.start()
    headline = runtime.get_content("hero_copy", "headline", "Default")
    runtime.track_conversion("hero_copy", "cta_click")
    await runtime.close()

``start()`` never raises on catalog or storage trouble; the page simply
renders its default copy.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from pagelab.config import Settings, get_settings
from pagelab.experiments.catalog import ExperimentCatalog
from pagelab.experiments.engine import AssignmentEngine
from pagelab.experiments.models import AssignedVariant
from pagelab.experiments.store import AssignmentStore
from pagelab.identity import IdentityProvider
from pagelab.lifecycle import PageLifecycle
from pagelab.state_backend import InMemoryBackend, StateBackend, get_state_backend
from pagelab.telemetry.pipeline import EventSink, TelemetryPipeline
from pagelab.telemetry.sink import HttpEventSink
from pagelab.telemetry.trackers import Analytics, ScrollDepthTracker, TimeOnPageTracker

logger = logging.getLogger(__name__)

HERO_EXPERIMENT = "hero_copy"


@dataclass(frozen=True)
class HeroCopy:
    """Hero section copy after experiment substitution."""

    headline: str = "Autonomous Revenue Engine."
    subheadline: str = "Modern Sales Outreach Made Simple."
    cta_text: str = "Calculate Your Savings"
    cta_secondary_text: str = "See the OS in Action"


class PageRuntime:
    """Per-page composition of assignment and telemetry.

    Args:
        page_url: URL stamped on every event.
        settings: Overrides ``get_settings()``.
        durable: Visitor-lifetime storage (defaults to the configured backend).
        session: Session-lifetime storage (defaults to a fresh in-memory one).
        http_client: Shared client for the catalog and the sink.
        catalog: Shared catalog so its cache spans page loads.
        sink: Overrides the HTTP batch sink.
        lifecycle: Visibility/unload signal source.
        clock: Monotonic clock for time-on-page.
    """

    def __init__(
        self,
        *,
        page_url: str = "",
        settings: Settings | None = None,
        durable: StateBackend | None = None,
        session: StateBackend | None = None,
        http_client: httpx.AsyncClient | None = None,
        catalog: ExperimentCatalog | None = None,
        sink: EventSink | None = None,
        lifecycle: PageLifecycle | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings()
        self.page_url = page_url
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.API_BASE_URL.rstrip("/"),
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS),
        )
        self._owns_http = http_client is None

        durable = durable if durable is not None else get_state_backend()
        session = session if session is not None else InMemoryBackend()
        self.identity = IdentityProvider(
            durable,
            session,
            visitor_key=settings.VISITOR_ID_KEY,
            session_key=settings.SESSION_ID_KEY,
            session_ttl=settings.SESSION_TTL_SECONDS,
        )

        self.lifecycle = lifecycle or PageLifecycle()
        self.pipeline = TelemetryPipeline(
            sink or HttpEventSink(path=settings.ANALYTICS_BATCH_PATH, http_client=self._http),
            flush_delay=settings.FLUSH_DELAY_SECONDS,
            max_requeue=settings.MAX_REQUEUE_SIZE,
            max_batch=settings.MAX_BATCH_EVENTS,
        )
        self.pipeline.attach(self.lifecycle)

        self.analytics = Analytics(
            self.pipeline,
            visitor_id=self.identity.visitor_id,
            session_id=self.identity.session_id,
            page_url=page_url,
            clock=clock,
        )
        self.catalog = catalog or ExperimentCatalog(
            self._http,
            path=settings.EXPERIMENTS_PATH,
            ttl=settings.CATALOG_CACHE_TTL_SECONDS,
        )
        self.engine = AssignmentEngine(
            AssignmentStore(durable, settings.ASSIGNMENTS_KEY),
            self.analytics,
        )
        self.scroll = ScrollDepthTracker(self.analytics, settings.SCROLL_MILESTONES)
        self.time_on_page = TimeOnPageTracker(
            self.analytics, settings.TIME_ON_PAGE_MILESTONES, clock=clock,
        )
        self.is_loading = True

    @property
    def visitor_id(self) -> str:
        return self.identity.visitor_id

    async def start(
        self, *, referrer: str | None = None, track_page_view: bool = True,
    ) -> list[AssignedVariant]:
        """Mount the page: page view, milestone timers, catalog fetch, assignment."""
        if track_page_view:
            self.analytics.track_page_view(urlsplit(self.page_url).path or "/", referrer)
        self.time_on_page.start()

        experiments = await self.catalog.fetch_active()
        assigned = self.engine.resolve_assignments(self.visitor_id, experiments)
        self.is_loading = False
        logger.info(
            "Page runtime started: visitor=%s experiments=%d assigned=%d",
            self.visitor_id[:8],
            len(experiments),
            len(assigned),
        )
        return assigned

    def get_variant(self, experiment_name: str) -> AssignedVariant | None:
        return self.engine.get_variant(experiment_name)

    def get_content(self, experiment_name: str, content_key: str, default_value: str) -> str:
        return self.engine.get_content(experiment_name, content_key, default_value)

    def track_conversion(self, experiment_name: str, conversion_type: str) -> bool:
        return self.engine.track_conversion(experiment_name, conversion_type)

    def hero_copy(self) -> HeroCopy:
        defaults = HeroCopy()
        return HeroCopy(
            headline=self.get_content(HERO_EXPERIMENT, "headline", defaults.headline),
            subheadline=self.get_content(HERO_EXPERIMENT, "subheadline", defaults.subheadline),
            cta_text=self.get_content(HERO_EXPERIMENT, "ctaText", defaults.cta_text),
            cta_secondary_text=self.get_content(
                HERO_EXPERIMENT, "ctaSecondaryText", defaults.cta_secondary_text,
            ),
        )

    def track_hero_conversion(self, conversion_type: str) -> bool:
        return self.track_conversion(HERO_EXPERIMENT, conversion_type)

    async def close(self) -> None:
        """Unmount: stop timers, fire unload, drain the queue, release the client."""
        self.time_on_page.stop()
        await self.lifecycle.unload()
        await self.pipeline.stop()
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()
