"""Price registry: the billable properties and their unit prices.

A registry is built once at startup and only read afterwards, so any number
of pricing paths can share it without locking. Properties are addressed by
name for humans and by a small enumeration id inside stored usage maps.
"""

import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

from clustermeter.exceptions import RegistryError, UnknownPropertyError
from clustermeter.resources.config import GPU_PROPERTY, GPU_RESOURCE_PREFIX, PriceType
from clustermeter.resources.quantity import Quantity
from clustermeter.resources.units import gpu_resource_product, is_gpu_resource

logger = logging.getLogger(__name__)

# Enumeration ids are stored as uint8 keys.
MAX_ENUM = 255


@dataclass(frozen=True)
class PropertyType:
    """One billable resource kind.

    amount = used (average or accumulated, per price_type) / unit * unit_price
    """

    name: str
    enum: int
    price_type: PriceType = PriceType.AVG
    unit_price: int = 0
    encrypt_unit_price: str = ""
    unit_string: str = ""
    unit: Optional[Quantity] = None
    alias: str = ""
    unit_period: str = ""  # billing period, seconds

    def __post_init__(self):
        if not self.name:
            raise RegistryError("property name must not be empty")
        if isinstance(self.enum, bool) or not isinstance(self.enum, int) or not 0 <= self.enum <= MAX_ENUM:
            raise RegistryError(f"property {self.name}: enum must be an int in 0..{MAX_ENUM}, got {self.enum!r}")
        if not isinstance(self.price_type, PriceType):
            object.__setattr__(self, "price_type", PriceType(self.price_type or PriceType.AVG.value))

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "PropertyType":
        return cls(
            name=doc["name"],
            enum=doc["enum"],
            price_type=PriceType(doc.get("price_type") or PriceType.AVG.value),
            unit_price=int(doc.get("unit_price") or 0),
            encrypt_unit_price=doc.get("encrypt_unit_price") or "",
            unit_string=doc.get("unit") or "",
            alias=doc.get("alias") or "",
            unit_period=doc.get("unit_period") or "",
        )

    def to_document(self) -> Dict[str, Any]:
        doc = {
            "name": self.name,
            "alias": self.alias,
            "enum": self.enum,
            "price_type": self.price_type.value,
            "unit_price": self.unit_price,
            "encrypt_unit_price": self.encrypt_unit_price,
            "unit": self.unit_string,
        }
        if self.unit_period:
            doc["unit_period"] = self.unit_period
        return doc


@dataclass(frozen=True)
class ResolvedProperty:
    """A registry entry matched for a (possibly product-suffixed) property name."""

    property_type: PropertyType
    product: str = ""

    @property
    def unit_price(self) -> int:
        return self.property_type.unit_price


def _with_unit(prop: PropertyType) -> PropertyType:
    """Parse unit_string into unit unless the entry already carries one."""
    if prop.unit is None and prop.unit_string:
        return replace(prop, unit=Quantity.parse(prop.unit_string))
    return prop


class PropertyRegistry:
    """Immutable view over a property list, indexed by name and enumeration id."""

    __slots__ = ("_types", "_by_name", "_by_enum")

    def __init__(self, types: Iterable[PropertyType]):
        parsed = tuple(_with_unit(t) for t in types)
        by_name: Dict[str, PropertyType] = {}
        by_enum: Dict[int, PropertyType] = {}
        for prop in parsed:
            if prop.name in by_name:
                raise RegistryError(f"duplicate property name: {prop.name}")
            if prop.enum in by_enum:
                raise RegistryError(
                    f"duplicate enum {prop.enum}: {by_enum[prop.enum].name} and {prop.name}"
                )
            by_name[prop.name] = prop
            by_enum[prop.enum] = prop
        object.__setattr__(self, "_types", parsed)
        object.__setattr__(self, "_by_name", MappingProxyType(by_name))
        object.__setattr__(self, "_by_enum", MappingProxyType(by_enum))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("PropertyRegistry is read-only")

    # ── Views ─────────────────────────────────────────────────────────

    @property
    def types(self) -> Tuple[PropertyType, ...]:
        return self._types

    @property
    def by_name(self) -> Mapping[str, PropertyType]:
        return self._by_name

    @property
    def by_enum(self) -> Mapping[int, PropertyType]:
        return self._by_enum

    def __iter__(self) -> Iterator[PropertyType]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PropertyRegistry):
            return NotImplemented
        return self._types == other._types

    def __hash__(self) -> int:
        return hash(self._types)

    def __repr__(self) -> str:
        return f"PropertyRegistry({[t.name for t in self._types]})"

    # ── Lookups ───────────────────────────────────────────────────────

    def get(self, name: str) -> Optional[PropertyType]:
        return self._by_name.get(name)

    def get_by_enum(self, enum: int) -> Optional[PropertyType]:
        return self._by_enum.get(enum)

    def resolve(self, name: str) -> ResolvedProperty:
        """Find the price entry for a property name.

        GPU names ("gpu-<product>") match an exact entry first, then the
        longest "gpu-..." entry that prefixes the name, then the generic
        "gpu" entry. The product id is returned alongside for display.
        """
        product = gpu_resource_product(name) if is_gpu_resource(name) else ""
        prop = self._by_name.get(name)
        if prop is not None:
            return ResolvedProperty(prop, product)
        if product:
            candidates = [
                t for t in self._types
                if t.name.startswith(GPU_RESOURCE_PREFIX) and name.startswith(t.name)
            ]
            if candidates:
                return ResolvedProperty(max(candidates, key=lambda t: len(t.name)), product)
            generic = self._by_name.get(GPU_PROPERTY)
            if generic is not None:
                return ResolvedProperty(generic, product)
        raise UnknownPropertyError(name)

    def enum_of(self, name: str) -> int:
        return self.resolve(name).property_type.enum

    # ── Translation ───────────────────────────────────────────────────

    def used_by_name(self, used: Mapping[int, int]) -> Dict[str, int]:
        """Re-key an enum-keyed usage map by property name.

        Ids not in this registry (retired properties in old records) are
        dropped.
        """
        named: Dict[str, int] = {}
        for enum, amount in used.items():
            prop = self._by_enum.get(enum)
            if prop is None:
                logger.debug("Dropping unknown property enum %s", enum)
                continue
            named[prop.name] = amount
        return named

    def used_by_enum(self, used: Mapping[str, int]) -> Dict[int, int]:
        """Inverse of used_by_name; unknown names are dropped."""
        return {
            self._by_name[name].enum: amount
            for name, amount in used.items()
            if name in self._by_name
        }


def build_registry(types: Iterable[Union[PropertyType, Mapping[str, Any]]]) -> PropertyRegistry:
    """Build a registry from property entries or their stored documents."""
    return PropertyRegistry(
        t if isinstance(t, PropertyType) else PropertyType.from_document(t)
        for t in types
    )


DEFAULT_PROPERTY_TYPES: Tuple[PropertyType, ...] = (
    PropertyType(name="cpu", enum=0, price_type=PriceType.AVG, unit_price=67, unit_string="1m"),
    PropertyType(name="memory", enum=1, price_type=PriceType.AVG, unit_price=33, unit_string="1Mi"),
    PropertyType(name="storage", enum=2, price_type=PriceType.AVG, unit_price=2, unit_string="1Mi"),
    PropertyType(name="network", enum=3, price_type=PriceType.AVG, unit_price=781, unit_string="1Mi"),
)

DEFAULT_REGISTRY = build_registry(DEFAULT_PROPERTY_TYPES)


def used_by_name(used: Mapping[int, int], registry: PropertyRegistry = DEFAULT_REGISTRY) -> Dict[str, int]:
    """Translate an enum-keyed usage map to names through ``registry``."""
    return registry.used_by_name(used)


# ── Price list ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Price:
    """One row of the price store."""

    property: str
    price: int
    detail: str = ""

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Price":
        return cls(property=doc["property"], price=int(doc["price"]), detail=doc.get("detail") or "")

    def to_document(self) -> Dict[str, Any]:
        return {"property": self.property, "price": self.price, "detail": self.detail}


DEFAULT_PRICES: Mapping[str, Price] = MappingProxyType({
    "cpu": Price(property="cpu", price=67, detail="mCore unit"),
    "memory": Price(property="memory", price=33, detail="Mebibytes unit"),
    "storage": Price(property="storage", price=2, detail="Mebibytes unit"),
})
