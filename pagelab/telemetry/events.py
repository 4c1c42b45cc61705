"""Telemetry event types and the immutable event record."""

import time
from enum import Enum

from pydantic import BaseModel, Field

EventValue = str | int | float | bool | None


class EventType(str, Enum):
    """Known interaction event types.

    The pipeline accepts any non-empty string; these are the ones the page
    emits itself.
    """

    PAGE_VIEW = "page_view"
    SCROLL_DEPTH = "scroll_depth"
    CTA_CLICK = "cta_click"
    SECTION_VIEW = "section_view"
    FORM_START = "form_start"
    FORM_SUBMIT = "form_submit"
    TIME_ON_PAGE = "time_on_page"
    DEMO_MODAL_OPEN = "demo_modal_open"
    DEMO_MODAL_CLOSE = "demo_modal_close"
    SCRIPT_SCAN = "script_scan"
    ROI_CALCULATE = "roi_calculate"
    EXPERIMENT_VIEW = "experiment_view"
    EXPERIMENT_CONVERSION = "experiment_conversion"
    BLUEPRINT_DOWNLOAD = "blueprint_download"


def now_ms() -> int:
    return int(time.time() * 1000)


class TelemetryEvent(BaseModel):
    """A captured interaction. Frozen once created."""

    event_type: str = Field(..., min_length=1, alias="eventType")
    event_data: dict[str, EventValue] | None = Field(None, alias="eventData")
    session_id: str = Field(alias="sessionId")
    visitor_id: str = Field(alias="visitorId")
    page_url: str = Field("", alias="pageUrl")
    timestamp: int = Field(default_factory=now_ms)  # epoch milliseconds at capture

    model_config = {"populate_by_name": True, "frozen": True}

    def to_wire(self) -> dict:
        """camelCase JSON body for the ingestion endpoint."""
        return self.model_dump(by_alias=True, exclude_none=True)
