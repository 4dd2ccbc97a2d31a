"""Registry bootstrap: build the process-wide price registry at startup.

Prices arrive either encrypted in configuration or from the price store.
Either way the registry is all-or-nothing: if any single price cannot be
obtained the whole table is discarded and the built-in defaults are used.
A partly decrypted table could bill one resource at zero while the others
look correct, so it is never activated.
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from clustermeter.crypto.cipher import PriceCipher
from clustermeter.exceptions import PriceDecryptionError, PriceQueryError
from clustermeter.logging_config.performance import PerformanceTimer
from clustermeter.resources.registry import (
    DEFAULT_PRICES,
    DEFAULT_PROPERTY_TYPES,
    DEFAULT_REGISTRY,
    Price,
    PropertyRegistry,
    PropertyType,
    build_registry,
)
from clustermeter.resources.repository import fetch_prices
from clustermeter.settings import Settings, get_settings

logger = logging.getLogger(__name__)

RawPropertyType = Union[PropertyType, Mapping[str, Any]]


def _coerce(types: Iterable[RawPropertyType]) -> List[PropertyType]:
    return [t if isinstance(t, PropertyType) else PropertyType.from_document(t) for t in types]


def decrypt_prices(types: Iterable[PropertyType], cipher: PriceCipher) -> List[PropertyType]:
    """Copies of ``types`` with unit_price taken from encrypt_unit_price.

    Raises:
        PriceDecryptionError: on the first entry that has no ciphertext or
            whose ciphertext does not decrypt.
    """
    decrypted = []
    for prop in types:
        if not prop.encrypt_unit_price:
            raise PriceDecryptionError(f"encrypt {prop.name} unit price is empty", property_name=prop.name)
        try:
            price = cipher.decrypt_int64(prop.encrypt_unit_price)
        except PriceDecryptionError as exc:
            raise PriceDecryptionError(
                f"failed to decrypt {prop.name} unit price: {exc.message}",
                property_name=prop.name,
            ) from exc
        decrypted.append(replace(prop, unit_price=price))
    return decrypted


def load_registry(
    raw_types: Iterable[RawPropertyType],
    cipher: Optional[PriceCipher] = None,
) -> PropertyRegistry:
    """Registry from encrypted property entries, or DEFAULT_REGISTRY on any decryption failure.

    A malformed unit string is not a decryption failure and propagates.
    """
    types = _coerce(raw_types)
    if not types:
        logger.warning("Encrypted price list is empty, using default price table", extra={"source": "defaults"})
        return DEFAULT_REGISTRY

    try:
        decrypted = decrypt_prices(types, cipher or PriceCipher())
    except PriceDecryptionError as exc:
        logger.warning("Failed to decrypt price: %s, using default price table", exc, extra={"source": "defaults"})
        return DEFAULT_REGISTRY

    registry = build_registry(decrypted)
    logger.info("Price registry activated with %d properties", len(registry), extra={"source": "decrypted"})
    return registry


def read_encrypted_types(path: Union[str, Path]) -> List[PropertyType]:
    """Read a JSON array of encrypted property entries."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of properties")
    return _coerce(data)


# ── Price store ───────────────────────────────────────────────────────


def load_prices(
    session_factory: Callable[[], Session],
    timeout: Optional[float] = None,
) -> Dict[str, Price]:
    """Current prices by property, or DEFAULT_PRICES if the store cannot be read."""
    try:
        prices = fetch_prices(session_factory, timeout)
    except PriceQueryError as exc:
        logger.warning("%s, using default prices", exc, extra={"source": "defaults"})
        return dict(DEFAULT_PRICES)
    return {p.property: p for p in prices}


def registry_from_prices(
    prices: Iterable[Price],
    template: Iterable[PropertyType] = DEFAULT_PROPERTY_TYPES,
) -> PropertyRegistry:
    """Apply a price list to the template properties.

    Every template property must be priced; otherwise DEFAULT_REGISTRY.
    """
    by_property = {p.property: p for p in prices}
    template = list(template)
    missing = [t.name for t in template if t.name not in by_property]
    if missing:
        logger.warning(
            "No price for %s, using default price table", ", ".join(missing),
            extra={"source": "defaults"},
        )
        return DEFAULT_REGISTRY
    registry = build_registry(replace(t, unit_price=by_property[t.name].price) for t in template)
    logger.info("Price registry activated with %d properties", len(registry), extra={"source": "prices"})
    return registry


def bootstrap_registry(
    settings: Optional[Settings] = None,
    cipher: Optional[PriceCipher] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> PropertyRegistry:
    """Startup entry point: pick the registry source and never fail on configuration.

    Order: encrypted prices file (if configured), then the price store (if a
    session factory is given), then the built-in defaults.
    """
    settings = settings or get_settings()
    with PerformanceTimer("load price registry"):
        return _select_registry(settings, cipher, session_factory)


def _select_registry(
    settings: Settings,
    cipher: Optional[PriceCipher],
    session_factory: Optional[Callable[[], Session]],
) -> PropertyRegistry:
    if settings.encrypted_prices_file:
        try:
            raw_types = read_encrypted_types(settings.encrypted_prices_file)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot read encrypted prices: %s, using default price table", exc,
                           extra={"source": "defaults"})
            return DEFAULT_REGISTRY
        return load_registry(raw_types, cipher or PriceCipher(settings.price_encryption_key))

    if session_factory is not None:
        prices = load_prices(session_factory, settings.price_fetch_timeout)
        return registry_from_prices(prices.values())

    logger.info("No price source configured, using default price table", extra={"source": "defaults"})
    return DEFAULT_REGISTRY
