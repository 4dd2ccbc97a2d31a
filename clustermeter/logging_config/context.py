"""Metering Context Management.

Context variables binding a run id, the billed category (namespace or app
id) and the billing order id to every log entry emitted while a metering
or billing pass is in progress.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any


_run_id_var: ContextVar[str] = ContextVar("run_id", default="")
_category_var: ContextVar[str] = ContextVar("category", default="")
_order_id_var: ContextVar[str] = ContextVar("order_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_run_id() -> str:
    """Generate a unique run ID using UUID4."""
    return str(uuid.uuid4())


def get_run_id() -> str:
    return _run_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    run_id = _run_id_var.get()
    if run_id:
        ctx["run_id"] = run_id
    category = _category_var.get()
    if category:
        ctx["category"] = category
    order_id = _order_id_var.get()
    if order_id:
        ctx["order_id"] = order_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class MeteringContext:
    """Context manager for run-scoped logging context.

    Empty fields are inherited from the enclosing context: a settlement
    opened inside a metering run keeps the run id and category and adds
    its order id. A run id is generated only at the outermost level.

    Example:
        with MeteringContext(category="ns-team-a"):
            logger.info("pricing bucket")  # includes run_id, category
    """

    run_id: str = ""
    category: str = ""
    order_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.run_id:
            self.run_id = get_run_id() or generate_run_id()

    def __enter__(self) -> "MeteringContext":
        self._tokens = [(_run_id_var, _run_id_var.set(self.run_id))]
        if self.category:
            self._tokens.append((_category_var, _category_var.set(self.category)))
        if self.order_id:
            self._tokens.append((_order_id_var, _order_id_var.set(self.order_id)))
        merged = {**_extra_context_var.get(), **self.extra}
        self._tokens.append((_extra_context_var, _extra_context_var.set(merged)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
