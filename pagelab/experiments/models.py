"""Pydantic v2 models for experiment definitions and resolved assignments.

Field aliases follow the camelCase wire format served by the catalog
endpoint (``isActive``, ``startDate``...). Models accept either spelling.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class Variant(BaseModel):
    """One content alternative inside an experiment."""

    id: str
    name: str
    weight: float  # Relative probability mass; assignability checks the total
    content: dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class Experiment(BaseModel):
    """A named A/B test. Variant order is part of the experiment's identity."""

    id: int | str
    name: str
    description: str | None = None
    is_active: bool = Field(True, alias="isActive")
    variants: list[Variant] = Field(default_factory=list)
    target_element: str | None = Field(None, alias="targetElement")
    start_date: datetime | None = Field(None, alias="startDate")
    end_date: datetime | None = Field(None, alias="endDate")

    model_config = {"populate_by_name": True}

    @property
    def total_weight(self) -> float:
        return sum(v.weight for v in self.variants)

    def in_window(self, now: datetime | None = None) -> bool:
        """True when *now* falls inside the optional [start_date, end_date) window."""
        now = now or datetime.now(timezone.utc)
        if self.start_date is not None and now < _aware(self.start_date):
            return False
        if self.end_date is not None and now >= _aware(self.end_date):
            return False
        return True

    def is_assignable(self, now: datetime | None = None) -> bool:
        """Active, in window, and with a non-empty, positively weighted variant list.

        Experiments failing this are skipped for assignment rather than raising.
        """
        return (
            self.is_active
            and bool(self.variants)
            and self.total_weight > 0
            and self.in_window(now)
        )

    def find_variant(self, variant_id: str) -> Variant | None:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


class AssignedVariant(BaseModel):
    """The variant a visitor sees for one experiment during this page life."""

    experiment_id: int | str = Field(alias="experimentId")
    experiment_name: str = Field(alias="experimentName")
    variant_id: str = Field(alias="variantId")
    variant_name: str = Field(alias="variantName")
    content: dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


def _aware(value: datetime) -> datetime:
    # Naive timestamps from the catalog are UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
