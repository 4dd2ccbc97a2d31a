"""Unit normalization: resource quantities to integer billing units.

Each resource kind has a fixed billing unit (one millicore for CPU and GPU,
one mebibyte for memory, storage and network). A quantity is converted to
ceil(milli_value / unit.milli_value), so any fractional unit is billed as a
whole one.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from clustermeter.exceptions import UnknownResourceError
from clustermeter.resources.config import (
    GPU_RESOURCE_PREFIX,
    INFRA_CPU_FLAVORS,
    INFRA_MEMORY_FLAVORS,
    RESOURCE_CPU,
    RESOURCE_GPU,
    RESOURCE_MEMORY,
    RESOURCE_NETWORK,
    RESOURCE_STORAGE,
)
from clustermeter.resources.quantity import Quantity, QuantityFormat

BIN_1MI = Quantity.from_int(1 << 20, QuantityFormat.BINARY_SI)
CPU_UNIT = Quantity.parse("1m")

PRICES_UNIT: Mapping[str, Quantity] = MappingProxyType({
    RESOURCE_CPU: CPU_UNIT,      # 1 millicore
    RESOURCE_GPU: CPU_UNIT,      # 1 milli-GPU
    RESOURCE_MEMORY: BIN_1MI,    # 1 MiB
    RESOURCE_STORAGE: BIN_1MI,   # 1 MiB
    RESOURCE_NETWORK: BIN_1MI,   # 1 MiB
})


@dataclass(frozen=True)
class QuantityDetail:
    """A quantity with a free-text note on where it came from."""

    quantity: Optional[Quantity]
    detail: str = ""


# ── GPU resource names ────────────────────────────────────────────────


def new_gpu_resource(product: str) -> str:
    """Resource name for a GPU product, e.g. "tesla-v100" -> "gpu-tesla-v100"."""
    return GPU_RESOURCE_PREFIX + product


def is_gpu_resource(resource: str) -> bool:
    return resource.startswith(GPU_RESOURCE_PREFIX)


def gpu_resource_product(resource: str) -> str:
    """Product id of a GPU resource name; other names are returned unchanged."""
    if is_gpu_resource(resource):
        return resource[len(GPU_RESOURCE_PREFIX):]
    return resource


# ── Normalization ─────────────────────────────────────────────────────


def billing_unit(resource: str) -> Quantity:
    """Divisor quantity for a resource kind. GPU product names map to the GPU unit."""
    if is_gpu_resource(resource):
        resource = RESOURCE_GPU
    unit = PRICES_UNIT.get(resource)
    if unit is None:
        raise UnknownResourceError(resource)
    return unit


def normalized_units(resource: str, quantity: Optional[Quantity]) -> int:
    """Number of billing units in ``quantity``, rounded up.

    An absent or zero quantity is zero units, even for a kind without a
    billing unit.
    """
    if quantity is None:
        return 0
    milli = quantity.milli_value()
    if milli == 0:
        return 0
    unit = billing_unit(resource)
    return -(-milli // unit.milli_value())


def resource_value(resource: str, resources: Mapping[str, QuantityDetail]) -> int:
    """Normalized units of one resource kind out of a per-kind usage mapping."""
    entry = resources.get(resource)
    return normalized_units(resource, entry.quantity if entry is not None else None)


# ── Infra nodes ───────────────────────────────────────────────────────


def infra_cpu_quantity(flavor: str, count: int) -> Optional[Quantity]:
    """Total cores of ``count`` nodes of ``flavor``, or None for an unknown flavor."""
    cores = INFRA_CPU_FLAVORS.get(flavor)
    if cores is None:
        return None
    return Quantity.from_int(cores * count, QuantityFormat.DECIMAL_SI)


def infra_memory_quantity(flavor: str, count: int) -> Optional[Quantity]:
    """Total memory of ``count`` nodes of ``flavor`` in bytes (binary SI)."""
    gib = INFRA_MEMORY_FLAVORS.get(flavor)
    if gib is None:
        return None
    return Quantity.from_int((gib * count) << 30, QuantityFormat.BINARY_SI)


def infra_disk_quantity(capacity_gib: int) -> Quantity:
    return Quantity.from_int(capacity_gib << 30, QuantityFormat.BINARY_SI)
