"""Pydantic v2 request/response models for the ingestion and catalog API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from pagelab.experiments.models import Experiment, Variant


class AnalyticsEventIn(BaseModel):
    """One tracked event as posted by the page."""

    event_type: str = Field(..., min_length=1, max_length=50, alias="eventType")
    event_data: dict[str, Any] | None = Field(None, alias="eventData")
    session_id: str | None = Field(None, max_length=100, alias="sessionId")
    visitor_id: str | None = Field(None, max_length=100, alias="visitorId")
    page_url: str | None = Field(None, alias="pageUrl")
    referrer: str | None = None
    user_agent: str | None = Field(None, alias="userAgent")
    experiment_id: int | None = Field(None, alias="experimentId")
    variant_id: str | None = Field(None, max_length=50, alias="variantId")
    timestamp: int | None = None  # client capture time, epoch ms

    model_config = {"populate_by_name": True}


class StoredEvent(AnalyticsEventIn):
    id: int
    created_at: datetime = Field(alias="createdAt")


class ConversionRequest(BaseModel):
    experiment_id: int | str = Field(alias="experimentId")
    variant_id: str = Field(alias="variantId")
    conversion_type: str = Field(..., min_length=1, alias="conversionType")
    session_id: str | None = Field(None, alias="sessionId")
    visitor_id: str | None = Field(None, alias="visitorId")
    page_url: str | None = Field(None, alias="pageUrl")

    model_config = {"populate_by_name": True}


class ExperimentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    is_active: bool = Field(True, alias="isActive")
    variants: list[Variant] = Field(..., min_length=1)
    target_element: str | None = Field(None, alias="targetElement")
    start_date: datetime | None = Field(None, alias="startDate")
    end_date: datetime | None = Field(None, alias="endDate")

    model_config = {"populate_by_name": True}


class ExperimentUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    is_active: bool | None = Field(None, alias="isActive")
    variants: list[Variant] | None = Field(None, min_length=1)
    target_element: str | None = Field(None, alias="targetElement")
    start_date: datetime | None = Field(None, alias="startDate")
    end_date: datetime | None = Field(None, alias="endDate")

    model_config = {"populate_by_name": True}

    @field_validator("name", "is_active", "variants", mode="before")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        """These may be omitted but not cleared."""
        if value is None:
            raise ValueError("may be omitted but not set to null")
        return value


class ExperimentRecord(Experiment):
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class EventCount(BaseModel):
    event_type: str = Field(alias="eventType")
    count: int

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    status: str
    version: str
    experiments_loaded: int
    events_stored: int
    environment: str = "development"


class LiveResponse(BaseModel):
    status: str = "alive"
