"""Resource metering: price registry, unit normalization, usage records and billing ledger.

Persistence (repository) and startup loading (bootstrap) are imported from
their modules directly; they depend on the database layer.
"""

from .config import (
    PriceType,
    BillingStatus,
    BillingType,
    AppType,
    app_type_id,
    app_type_name,
    PRICE_SCALE,
    GPU_PROPERTY,
    GPU_RESOURCE_PREFIX,
)
from .quantity import (
    Quantity,
    QuantityFormat,
    as_quantity,
)
from .units import (
    PRICES_UNIT,
    QuantityDetail,
    billing_unit,
    normalized_units,
    resource_value,
    new_gpu_resource,
    is_gpu_resource,
    gpu_resource_product,
    infra_cpu_quantity,
    infra_memory_quantity,
    infra_disk_quantity,
)
from .registry import (
    PropertyType,
    ResolvedProperty,
    PropertyRegistry,
    build_registry,
    used_by_name,
    Price,
    DEFAULT_PROPERTY_TYPES,
    DEFAULT_REGISTRY,
    DEFAULT_PRICES,
)
from .records import (
    Monitor,
    Metering,
    bucket_start,
    compute_amount,
    price_used,
    build_metering,
    meter_monitor,
)
from .ledger import (
    Payment,
    Transfer,
    AppCost,
    Billing,
    BillingHandler,
    BillingLedger,
    create_consumption_billing,
    create_transfer_billing,
    merge_billing,
    new_order_id,
)

__all__ = [
    # Config
    "PriceType",
    "BillingStatus",
    "BillingType",
    "AppType",
    "app_type_id",
    "app_type_name",
    "PRICE_SCALE",
    "GPU_PROPERTY",
    "GPU_RESOURCE_PREFIX",
    # Quantity
    "Quantity",
    "QuantityFormat",
    "as_quantity",
    # Units
    "PRICES_UNIT",
    "QuantityDetail",
    "billing_unit",
    "normalized_units",
    "resource_value",
    "new_gpu_resource",
    "is_gpu_resource",
    "gpu_resource_product",
    "infra_cpu_quantity",
    "infra_memory_quantity",
    "infra_disk_quantity",
    # Registry
    "PropertyType",
    "ResolvedProperty",
    "PropertyRegistry",
    "build_registry",
    "used_by_name",
    "Price",
    "DEFAULT_PROPERTY_TYPES",
    "DEFAULT_REGISTRY",
    "DEFAULT_PRICES",
    # Records
    "Monitor",
    "Metering",
    "bucket_start",
    "compute_amount",
    "price_used",
    "build_metering",
    "meter_monitor",
    # Ledger
    "Payment",
    "Transfer",
    "AppCost",
    "Billing",
    "BillingHandler",
    "BillingLedger",
    "create_consumption_billing",
    "create_transfer_billing",
    "merge_billing",
    "new_order_id",
]
