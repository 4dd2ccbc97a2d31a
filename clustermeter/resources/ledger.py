"""Billing ledger: settled-once billing entries with per-application costs.

A Billing is a snapshot. Its amount and AppCost breakdown are computed
from the registry when the entry is created and never recomputed, so a
later price change does not touch existing entries. The only transition is
UNSETTLED -> SETTLED; corrections are new entries (e.g. a transfer), not
edits.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from clustermeter.exceptions import LedgerValidationError
from clustermeter.logging_config.context import MeteringContext
from clustermeter.resources.config import BillingStatus, BillingType
from clustermeter.resources.records import enum_used_map, to_utc, price_used
from clustermeter.resources.registry import PropertyRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Payment:
    """Payment attached to a consumption entry."""

    method: str
    user_id: str
    amount: int = 0
    trade_no: str = ""
    code_url: str = ""

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"method": self.method, "user_id": self.user_id}
        if self.amount:
            doc["amount"] = self.amount
        if self.trade_no:
            doc["tradeNO"] = self.trade_no
        if self.code_url:
            doc["codeURL"] = self.code_url
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Payment":
        return cls(
            method=doc.get("method") or "",
            user_id=doc.get("user_id") or "",
            amount=int(doc.get("amount") or 0),
            trade_no=doc.get("tradeNO") or "",
            code_url=doc.get("codeURL") or "",
        )


@dataclass(frozen=True)
class Transfer:
    """Balance transfer between two owners."""

    from_owner: str
    to_owner: str
    amount: int

    def to_document(self) -> Dict[str, Any]:
        return {"from": self.from_owner, "to": self.to_owner, "amount": self.amount}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Transfer":
        return cls(
            from_owner=doc.get("from") or "",
            to_owner=doc.get("to") or "",
            amount=int(doc.get("amount") or 0),
        )


Attachment = Union[Payment, Transfer, None]

# Billing types that must carry a specific attachment kind. Every other
# type carries none.
_REQUIRED_ATTACHMENT = {
    BillingType.CONSUMPTION: Payment,
    BillingType.TRANSFER_IN: Transfer,
    BillingType.TRANSFER_OUT: Transfer,
}


@dataclass(frozen=True)
class AppCost:
    """Cost of one application inside a billing entry.

    ``used`` holds billing units and ``used_amount`` the priced amounts,
    both keyed by property enumeration id. ``amount`` is their sum.
    """

    name: str
    used: Mapping[int, int] = field(default_factory=dict)
    used_amount: Mapping[int, int] = field(default_factory=dict)
    amount: int = 0

    def __post_init__(self):
        object.__setattr__(self, "used", enum_used_map(self.used))
        object.__setattr__(self, "used_amount", enum_used_map(self.used_amount))
        expected = sum(self.used_amount.values())
        if self.amount != expected:
            raise LedgerValidationError(
                f"app cost {self.name}: amount {self.amount} != priced sum {expected}"
            )

    @classmethod
    def compute(cls, name: str, used: Mapping[int, int], registry: PropertyRegistry) -> "AppCost":
        """Price an application's usage against the current registry."""
        used_amount = price_used(used, registry)
        return cls(name=name, used=used, used_amount=used_amount, amount=sum(used_amount.values()))

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "used": dict(self.used),
            "used_amount": dict(self.used_amount),
            "amount": self.amount,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "AppCost":
        return cls(
            name=doc.get("name") or "",
            used=doc.get("used"),
            used_amount=doc.get("used_amount"),
            amount=int(doc.get("amount") or 0),
        )


@dataclass(frozen=True)
class BillingHandler:
    """Summary of a billing entry used by settlement processes."""

    order_id: str
    time: datetime
    amount: int
    status: BillingStatus


@dataclass(frozen=True)
class Billing:
    """One ledger entry for a namespace.

    ``attachment`` is the Payment of a CONSUMPTION entry or the Transfer of a
    TRANSFER_IN/TRANSFER_OUT entry; ``payment``/``transfer`` are views of it.
    """

    time: datetime
    order_id: str
    type: BillingType
    namespace: str
    amount: int
    owner: str = ""
    status: BillingStatus = BillingStatus.UNSETTLED
    app_costs: Tuple[AppCost, ...] = ()
    app_type: int = 0
    attachment: Attachment = None

    def __post_init__(self):
        object.__setattr__(self, "time", to_utc(self.time))
        object.__setattr__(self, "type", BillingType(self.type))
        object.__setattr__(self, "status", BillingStatus(self.status))
        object.__setattr__(self, "app_costs", tuple(self.app_costs))
        if not self.order_id:
            raise LedgerValidationError("billing order id must not be empty")
        self._check_attachment()
        if self.app_costs:
            total = sum(c.amount for c in self.app_costs)
            if self.amount != total:
                raise LedgerValidationError(
                    f"billing amount {self.amount} != app cost sum {total}",
                    order_id=self.order_id,
                )

    def _check_attachment(self) -> None:
        required = _REQUIRED_ATTACHMENT.get(self.type)
        if required is None:
            if self.attachment is not None:
                raise LedgerValidationError(
                    f"{self.type.name} billing must not carry a {type(self.attachment).__name__}",
                    order_id=self.order_id,
                )
        elif not isinstance(self.attachment, required):
            found = type(self.attachment).__name__ if self.attachment is not None else "nothing"
            raise LedgerValidationError(
                f"{self.type.name} billing requires a {required.__name__}, got {found}",
                order_id=self.order_id,
            )

    @property
    def payment(self) -> Optional[Payment]:
        return self.attachment if isinstance(self.attachment, Payment) else None

    @property
    def transfer(self) -> Optional[Transfer]:
        return self.attachment if isinstance(self.attachment, Transfer) else None

    @property
    def is_settled(self) -> bool:
        return self.status == BillingStatus.SETTLED

    def settled(self) -> "Billing":
        """This entry in the SETTLED state (itself if already settled)."""
        if self.is_settled:
            return self
        return replace(self, status=BillingStatus.SETTLED)

    def handler(self) -> BillingHandler:
        return BillingHandler(order_id=self.order_id, time=self.time, amount=self.amount, status=self.status)

    def same_content(self, other: "Billing") -> bool:
        """Equal in everything except settlement status."""
        return replace(self, status=other.status) == other

    # ── Documents ─────────────────────────────────────────────────────

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "time": self.time,
            "order_id": self.order_id,
            "type": int(self.type),
            "namespace": self.namespace,
            "amount": self.amount,
            "owner": self.owner,
            "status": int(self.status),
        }
        if self.app_costs:
            doc["app_costs"] = [c.to_document() for c in self.app_costs]
        if self.app_type:
            doc["app_type"] = self.app_type
        if self.payment is not None:
            doc["payment"] = self.payment.to_document()
        if self.transfer is not None:
            doc["transfer"] = self.transfer.to_document()
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Billing":
        payment = doc.get("payment")
        transfer = doc.get("transfer")
        if payment and transfer:
            raise LedgerValidationError(
                "billing document carries both payment and transfer",
                order_id=doc.get("order_id"),
            )
        attachment: Attachment = None
        if payment:
            attachment = Payment.from_document(payment)
        elif transfer:
            attachment = Transfer.from_document(transfer)
        return cls(
            time=doc["time"],
            order_id=doc["order_id"],
            type=BillingType(int(doc["type"])),
            namespace=doc.get("namespace") or "",
            amount=int(doc.get("amount") or 0),
            owner=doc.get("owner") or "",
            status=BillingStatus(int(doc.get("status") or 0)),
            app_costs=tuple(AppCost.from_document(c) for c in doc.get("app_costs") or ()),
            app_type=int(doc.get("app_type") or 0),
            attachment=attachment,
        )


def new_order_id() -> str:
    return uuid.uuid4().hex


def create_consumption_billing(
    namespace: str,
    owner: str,
    app_costs: Iterable[AppCost],
    payment: Payment,
    time: Optional[datetime] = None,
    order_id: Optional[str] = None,
    app_type: int = 0,
) -> Billing:
    """New UNSETTLED consumption entry whose amount is the sum of its app costs."""
    costs = tuple(app_costs)
    return Billing(
        time=time or datetime.now(timezone.utc),
        order_id=order_id or new_order_id(),
        type=BillingType.CONSUMPTION,
        namespace=namespace,
        amount=sum(c.amount for c in costs),
        owner=owner,
        app_costs=costs,
        app_type=app_type,
        attachment=payment,
    )


def create_transfer_billing(
    namespace: str,
    owner: str,
    transfer: Transfer,
    outgoing: bool = True,
    time: Optional[datetime] = None,
    order_id: Optional[str] = None,
) -> Billing:
    """New UNSETTLED transfer entry for ``owner``."""
    return Billing(
        time=time or datetime.now(timezone.utc),
        order_id=order_id or new_order_id(),
        type=BillingType.TRANSFER_OUT if outgoing else BillingType.TRANSFER_IN,
        namespace=namespace,
        amount=transfer.amount,
        owner=owner,
        attachment=transfer,
    )


def merge_billing(existing: Optional[Billing], incoming: Billing) -> Billing:
    """Resolve a write of ``incoming`` over the entry stored under its order id.

    Re-writing the same entry is a no-op, a settled entry never reverts, and
    an unsettled entry may only be replaced by its settled twin.

    Raises:
        LedgerValidationError: same order id with different content.
    """
    if existing is None:
        return incoming
    if not existing.same_content(incoming):
        raise LedgerValidationError(
            "billing content differs from the stored entry",
            order_id=incoming.order_id,
        )
    if existing.is_settled:
        if not incoming.is_settled:
            logger.warning("Ignoring unsettled rewrite of settled billing %s", existing.order_id)
        return existing
    if incoming == existing:
        return existing
    return incoming


class BillingLedger:
    """In-memory ledger of billing entries keyed by order id."""

    def __init__(self) -> None:
        self._entries: Dict[str, Billing] = {}

    # ── Writes ────────────────────────────────────────────────────────

    def record(self, billing: Billing) -> Billing:
        """Store an entry; retries of the same entry are idempotent."""
        with MeteringContext(category=billing.namespace, order_id=billing.order_id):
            stored = merge_billing(self._entries.get(billing.order_id), billing)
            self._entries[billing.order_id] = stored
            return stored

    def settle(self, order_id: str) -> Billing:
        """Mark an entry SETTLED. Settling twice leaves it unchanged."""
        with MeteringContext(order_id=order_id):
            billing = self._entries.get(order_id)
            if billing is None:
                raise LedgerValidationError(f"Billing not found: {order_id}", order_id=order_id)
            if billing.is_settled:
                logger.warning("Billing %s is already settled", order_id)
                return billing
            settled = billing.settled()
            self._entries[order_id] = settled
            logger.info("Billing %s settled", order_id, extra={"amount": settled.amount})
            return settled

    # ── Queries ───────────────────────────────────────────────────────

    def get(self, order_id: str) -> Optional[Billing]:
        return self._entries.get(order_id)

    def list_billing(
        self,
        namespace: Optional[str] = None,
        status: Optional[BillingStatus] = None,
    ) -> List[Billing]:
        """List entries, newest first."""
        entries = list(self._entries.values())
        if namespace:
            entries = [b for b in entries if b.namespace == namespace]
        if status is not None:
            entries = [b for b in entries if b.status == status]
        return sorted(entries, key=lambda b: b.time, reverse=True)

    def get_statistics(self) -> Dict[str, object]:
        entries = list(self._entries.values())
        settled = [b for b in entries if b.is_settled]
        return {
            "total_entries": len(entries),
            "settled_entries": len(settled),
            "total_amount": sum(b.amount for b in entries),
            "settled_amount": sum(b.amount for b in settled),
            "outstanding_amount": sum(b.amount for b in entries if not b.is_settled),
        }
