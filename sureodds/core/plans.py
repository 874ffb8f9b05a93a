import enum
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sureodds.core.config import Settings


class PlanKind(str, enum.Enum):
    """Access tiers sold on the pricing page. Closed set: no fallback tier."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


@dataclass(frozen=True)
class PlanTerms:
    price: int
    duration: timedelta


class PlanCatalog:
    """
    Price and duration per plan kind.
    Built once from settings and passed to whoever needs it.
    """

    def __init__(self, terms: dict[PlanKind, PlanTerms]):
        missing = [kind.value for kind in PlanKind if kind not in terms]
        if missing:
            raise ValueError(f"Plan catalog is missing terms for: {', '.join(missing)}")

        for kind, t in terms.items():
            if t.price <= 0:
                raise ValueError(f"Price for {kind.value} must be positive")
            if t.duration <= timedelta(0):
                raise ValueError(f"Duration for {kind.value} must be positive")

        self._terms = dict(terms)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PlanCatalog":
        return cls({
            PlanKind.DAILY: PlanTerms(settings.price_daily, timedelta(days=settings.duration_daily_days)),
            PlanKind.WEEKLY: PlanTerms(settings.price_weekly, timedelta(days=settings.duration_weekly_days)),
            PlanKind.MONTHLY: PlanTerms(settings.price_monthly, timedelta(days=settings.duration_monthly_days)),
        })

    def terms(self, kind: PlanKind) -> PlanTerms:
        return self._terms[PlanKind(kind)]

    def price(self, kind: PlanKind) -> int:
        return self.terms(kind).price

    def duration(self, kind: PlanKind) -> timedelta:
        return self.terms(kind).duration

    def as_list(self) -> list[tuple[PlanKind, PlanTerms]]:
        return [(kind, self._terms[kind]) for kind in PlanKind]
