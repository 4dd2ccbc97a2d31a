"""Resource metering: enumerations and storage constants."""

from enum import Enum, IntEnum
from typing import Dict


class PriceType(Enum):
    """How the upstream collector aggregates a property over a period."""

    AVG = "AVG"
    SUM = "SUM"


class BillingStatus(IntEnum):
    """Settlement state of a billing entry."""

    UNSETTLED = 0
    SETTLED = 1


class BillingType(IntEnum):
    """Kind of ledger entry."""

    CONSUMPTION = 0
    RECHARGE = 1
    TRANSFER_IN = 2
    TRANSFER_OUT = 3
    ACTIVITY_GIVING = 4


class AppType(IntEnum):
    """Application kind tag carried by monitor samples and billing entries."""

    DB = 1
    APP = 2
    TERMINAL = 3
    JOB = 4
    OTHER = 5


def app_type_id(name: str) -> int:
    """Translate an app type name ("DB", "APP", ...) to its id."""
    try:
        return AppType[name.upper()].value
    except KeyError:
        raise ValueError(f"Unknown app type: {name}") from None


def app_type_name(type_id: int) -> str:
    """Translate an app type id to its name."""
    try:
        return AppType(type_id).name
    except ValueError:
        raise ValueError(f"Unknown app type id: {type_id}") from None


# 1_000_000 price units = 1 currency unit
PRICE_SCALE = 1_000_000

# ── Storage names ─────────────────────────────────────────────────────

RESOURCES_DB_NAME = "cluster-resources"
MONITOR_COLLECTION = "monitor"
PRICES_COLLECTION = "prices"
METERING_COLLECTION = "metering"
BILLING_COLLECTION = "billing"

CATEGORY_FIELD = "category"
PROPERTY_FIELD = "property"
TIME_FIELD = "time"
VALUE_FIELD = "value"
PRICE_FIELD = "price"
AMOUNT_FIELD = "amount"

# ── Property and resource names ───────────────────────────────────────

PROPERTY_INFRA_CPU = "infra-cpu"
PROPERTY_INFRA_MEMORY = "infra-memory"
PROPERTY_INFRA_DISK = "infra-disk"

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_STORAGE = "storage"
RESOURCE_NETWORK = "network"
RESOURCE_GPU = "nvidia.com/gpu"
RESOURCE_REQUEST_GPU = "requests." + RESOURCE_GPU
RESOURCE_LIMIT_GPU = "limits." + RESOURCE_GPU

# GPU resources are named GPU_RESOURCE_PREFIX + product, e.g. "gpu-tesla-v100".
GPU_RESOURCE_PREFIX = "gpu-"
# Registry entry priced for any GPU product without a dedicated entry.
GPU_PROPERTY = "gpu"

# Infra flavors: cores per node
INFRA_CPU_FLAVORS: Dict[str, int] = {
    "t2.medium": 2,
    "t2.large": 2,
    "t2.xlarge": 4,
    "ecs.c7.large": 2,
    "ecs.g7.large": 2,
    "ecs.g7.xlarge": 4,
}

# Infra flavors: GiB of memory per node
INFRA_MEMORY_FLAVORS: Dict[str, int] = {
    "t2.medium": 4,
    "t2.large": 8,
    "t2.xlarge": 16,
    "ecs.c7.large": 4,
    "ecs.g7.large": 8,
    "ecs.g7.xlarge": 16,
}
