"""Usage records: raw monitor samples and priced metering entries.

Monitor samples carry usage already expressed in billing units (see
units.normalized_units), keyed by property enumeration id. Pricing is a
plain multiplication by the registry's unit price. Whether a value is an
average or an accumulated total (PropertyType.price_type) is settled by
the collector before a sample gets here; nothing is aggregated in this
module.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from clustermeter.exceptions import UnknownPropertyError
from clustermeter.logging_config.context import MeteringContext
from clustermeter.resources.registry import PropertyRegistry

logger = logging.getLogger(__name__)

EnumUsedMap = Dict[int, int]

DEFAULT_BUCKET = timedelta(hours=1)


def enum_used_map(used: Optional[Mapping[Any, Any]]) -> Mapping[int, int]:
    """Read-only enum-keyed usage map; JSON round trips turn the keys into strings."""
    return MappingProxyType({int(k): int(v) for k, v in (used or {}).items()})


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def bucket_start(moment: datetime, period: timedelta = DEFAULT_BUCKET) -> datetime:
    """Floor ``moment`` to the start of its metering bucket (UTC)."""
    moment = to_utc(moment)
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    return epoch + ((moment - epoch) // period) * period


@dataclass(frozen=True)
class Monitor:
    """One raw usage observation for an application in a category."""

    time: datetime
    category: str
    name: str
    property: str
    used: Mapping[int, int] = field(default_factory=dict)
    app_type: int = 0

    def __post_init__(self):
        object.__setattr__(self, "time", to_utc(self.time))
        object.__setattr__(self, "used", enum_used_map(self.used))

    @property
    def key(self) -> Tuple[str, str, str, datetime]:
        return (self.category, self.name, self.property, self.time)

    def to_document(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "category": self.category,
            "type": self.app_type,
            "name": self.name,
            "property": self.property,
            "used": dict(self.used),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Monitor":
        return cls(
            time=doc["time"],
            category=doc["category"],
            name=doc.get("name") or "",
            property=doc.get("property") or "",
            used=doc.get("used"),
            app_type=int(doc.get("type") or 0),
        )


@dataclass(frozen=True)
class Metering:
    """One priced, time-bucketed entry: value in billing units, amount in price units."""

    category: str
    property: str
    time: datetime
    value: int
    amount: int
    detail: str = ""

    def __post_init__(self):
        object.__setattr__(self, "time", to_utc(self.time))

    @property
    def key(self) -> Tuple[str, str, datetime]:
        return (self.category, self.property, self.time)

    def to_document(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "property": self.property,
            "time": self.time,
            "value": self.value,
            "amount": self.amount,
            "detail": self.detail,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Metering":
        return cls(
            category=doc["category"],
            property=doc["property"],
            time=doc["time"],
            value=int(doc.get("value") or 0),
            amount=int(doc.get("amount") or 0),
            detail=doc.get("detail") or "",
        )


# ── Pricing ───────────────────────────────────────────────────────────


def compute_amount(property_name: str, value: int, registry: PropertyRegistry) -> int:
    """Price ``value`` billing units of a property."""
    return value * registry.resolve(property_name).unit_price


def price_used(used: Mapping[int, int], registry: PropertyRegistry) -> EnumUsedMap:
    """Price an enum-keyed usage map, keeping the enum keys.

    Raises:
        UnknownPropertyError: an id is not in the registry. Unpriced usage
            is never dropped silently.
    """
    amounts: EnumUsedMap = {}
    for enum, value in used.items():
        prop = registry.get_by_enum(enum)
        if prop is None:
            raise UnknownPropertyError(enum)
        amounts[enum] = value * prop.unit_price
    return amounts


def build_metering(
    category: str,
    property_name: str,
    time: datetime,
    value: int,
    registry: PropertyRegistry,
    detail: str = "",
) -> Metering:
    """Price one bucket of a property for a category."""
    return Metering(
        category=category,
        property=property_name,
        time=time,
        value=value,
        amount=compute_amount(property_name, value, registry),
        detail=detail,
    )


def meter_monitor(
    monitor: Monitor,
    registry: PropertyRegistry,
    bucket_time: Optional[datetime] = None,
) -> List[Metering]:
    """One metering entry per property id in a monitor sample.

    The bucket defaults to the sample time; the sample name becomes the
    entry detail.
    """
    moment = bucket_time or monitor.time
    entries = []
    with MeteringContext(category=monitor.category):
        for enum, value in sorted(monitor.used.items()):
            prop = registry.get_by_enum(enum)
            if prop is None:
                logger.error("Monitor sample %s has unpriced property id %s", monitor.name, enum)
                raise UnknownPropertyError(enum)
            entries.append(
                Metering(
                    category=monitor.category,
                    property=prop.name,
                    time=moment,
                    value=value,
                    amount=value * prop.unit_price,
                    detail=monitor.name,
                )
            )
        logger.debug(
            "Metered %s at %s", monitor.name, moment.isoformat(),
            extra={"amount": sum(e.amount for e in entries)},
        )
    return entries
