"""
Data models for the quote engine.

Selections and breakdowns are frozen dataclasses: a breakdown is a pure value
produced by one calculation and never touched afterwards.
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from ..config.schema import PaymentFrequency, PremiumServiceId
from ..errors import ValidationError


class OverageBilling(str, Enum):
    """How units beyond a line's included allotment are paid."""
    RECURRING = "recurring"  # folded into the subscription line
    PREPAID = "prepaid"      # paid up front for the pre-paid months, discounted
    POSTPAID = "postpaid"    # billed monthly on actual usage


@dataclass(frozen=True)
class TraceStep:
    """A single step in the price calculation trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass(frozen=True)
class Selection:
    """What the salesperson configured: products, plans, counts, add-ons and billing."""
    products: frozenset[str]
    plans: Mapping[str, str] = field(default_factory=dict)  # product line -> plan id
    # Total units per product line, included allotment counted
    unit_counts: Mapping[str, int] = field(default_factory=dict)
    add_ons: frozenset[str] = frozenset()
    frequency: PaymentFrequency = PaymentFrequency.ANNUAL
    installments: int = 1
    add_on_units: Mapping[str, int] = field(default_factory=dict)
    # Premium services the customer wants, paid when not included
    premium_services: frozenset[str] = frozenset()
    # Product line or tiered add-on -> OverageBilling; absent means recurring
    overage_billing: Mapping[str, str] = field(default_factory=dict)
    # Usage meter -> expected monthly volume, always post-paid
    usage: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        try:
            frequency = PaymentFrequency(self.frequency)
        except ValueError:
            raise ValidationError(
                f"unknown payment frequency '{self.frequency}'",
                field="frequency",
                value=self.frequency,
                allowed=[f.value for f in PaymentFrequency],
            ) from None

        object.__setattr__(self, "products", frozenset(self.products))
        object.__setattr__(self, "add_ons", frozenset(self.add_ons))
        object.__setattr__(self, "premium_services", frozenset(
            getattr(s, "value", s) for s in self.premium_services
        ))
        object.__setattr__(self, "plans", MappingProxyType(dict(self.plans)))
        object.__setattr__(self, "unit_counts", MappingProxyType(dict(self.unit_counts)))
        object.__setattr__(self, "add_on_units", MappingProxyType(dict(self.add_on_units)))
        object.__setattr__(self, "usage", MappingProxyType(dict(self.usage)))

        billing = {}
        for item_id, mode in self.overage_billing.items():
            try:
                billing[item_id] = OverageBilling(mode)
            except ValueError:
                raise ValidationError(
                    f"unknown overage billing '{mode}'",
                    field=f"overage_billing.{item_id}",
                    value=mode,
                    allowed=[m.value for m in OverageBilling],
                ) from None
        object.__setattr__(self, "overage_billing", MappingProxyType(billing))
        object.__setattr__(self, "frequency", frequency)

    def __hash__(self):
        # mappingproxy fields are unhashable; hash their sorted items instead
        return hash((
            self.products,
            tuple(sorted(self.plans.items())),
            tuple(sorted(self.unit_counts.items())),
            self.add_ons,
            self.frequency,
            self.installments,
            tuple(sorted(self.add_on_units.items())),
            self.premium_services,
            tuple(sorted((k, v.value) for k, v in self.overage_billing.items())),
            tuple(sorted(self.usage.items())),
        ))

    def billing_for(self, item_id: str) -> OverageBilling:
        return self.overage_billing.get(item_id, OverageBilling.RECURRING)

    def with_changes(self, **changes) -> "Selection":
        """Copy of this selection with some fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict) -> "Selection":
        """Build a selection from a JSON-like dict (lists instead of sets)."""
        return cls(
            products=frozenset(data.get("products", ())),
            plans=data.get("plans", {}),
            unit_counts={k: int(v) for k, v in data.get("unit_counts", {}).items()},
            add_ons=frozenset(data.get("add_ons", ())),
            frequency=data.get("frequency", PaymentFrequency.ANNUAL.value),
            installments=int(data.get("installments", 1)),
            add_on_units={k: int(v) for k, v in data.get("add_on_units", {}).items()},
            premium_services=frozenset(data.get("premium_services", ())),
            overage_billing=data.get("overage_billing", {}),
            usage={k: int(v) for k, v in data.get("usage", {}).items()},
        )


@dataclass(frozen=True)
class LineItem:
    """A single priced line: a product plan, an add-on or a paid premium service."""
    label: str
    kind: str  # "product", "add_on" or "premium_service"
    item_id: str
    base_amount: Decimal  # monthly-equivalent
    adjusted_amount: Decimal  # cycle total after frequency terms, unrounded
    quantity: Optional[int] = None
    billable_units: int = 0
    step_charges: tuple = ()

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "kind": self.kind,
            "item_id": self.item_id,
            "base_amount": str(self.base_amount),
            "adjusted_amount": str(self.adjusted_amount),
            "quantity": self.quantity,
            "billable_units": self.billable_units,
        }


@dataclass(frozen=True)
class ImplementationItem:
    """One-time onboarding charge for a product or add-on."""
    item_id: str
    label: str
    fee: Decimal
    waived: bool = False


@dataclass(frozen=True)
class PrepaidItem:
    """Overage paid up front for the pre-paid months, at the pre-paid discount."""
    item_id: str
    label: str
    billable_units: int
    monthly_amount: Decimal  # post-paid price of the overage for one month
    months: int
    discount_rate: Decimal
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "label": self.label,
            "billable_units": self.billable_units,
            "monthly_amount": str(self.monthly_amount),
            "months": self.months,
            "discount_rate": str(self.discount_rate),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class PostPaidItem:
    """Monthly charge on usage, billed after the fact and outside the subscription."""
    item_id: str
    label: str
    kind: str  # "overage" or "usage"
    billable_units: int
    monthly_amount: Decimal
    step_charges: tuple = ()

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "label": self.label,
            "kind": self.kind,
            "billable_units": self.billable_units,
            "monthly_amount": str(self.monthly_amount),
        }


@dataclass(frozen=True)
class PriceBreakdown:
    """Fully itemized result of a price calculation."""
    line_items: tuple[LineItem, ...]
    monthly_equivalent: Decimal
    subtotal_before_kombo: Decimal
    kombo_applied: Optional[str]
    kombo_name: Optional[str]
    kombo_discount_rate: Decimal
    kombo_discount_amount: Decimal
    implementation_fee: Decimal
    implementation_waived_units: int
    implementation_items: tuple[ImplementationItem, ...]
    final_total: Decimal
    vip_support_included: bool
    dedicated_cs_included: bool
    frequency: PaymentFrequency
    installments: int
    installment_amount: Decimal
    config_version: str
    trace: tuple[TraceStep, ...] = ()
    # Absorbs the cents lost when final_total does not split evenly
    first_installment_amount: Optional[Decimal] = None
    prepaid_items: tuple[PrepaidItem, ...] = ()
    prepaid_total: Decimal = Decimal("0")
    postpaid_items: tuple[PostPaidItem, ...] = ()
    postpaid_monthly: Decimal = Decimal("0")

    @property
    def installment_schedule(self) -> tuple[Decimal, ...]:
        """Every installment amount; sums exactly to final_total."""
        first = self.first_installment_amount
        if first is None:
            first = self.installment_amount
        return (first,) + (self.installment_amount,) * (self.installments - 1)

    @property
    def first_cycle_total(self) -> Decimal:
        """
        What the customer pays in the first billing cycle: subscription,
        implementation and any pre-paid overage. Post-paid charges come later.
        """
        return self.final_total + self.implementation_fee + self.prepaid_total

    def line_item(self, item_id: str) -> Optional[LineItem]:
        for item in self.line_items:
            if item.item_id == item_id:
                return item
        return None

    def get_trace_text(self) -> str:
        """Get human-readable calculation trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"• {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {t.step}: {t.description}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """JSON-ready representation, amounts as strings."""
        return {
            "config_version": self.config_version,
            "frequency": self.frequency.value,
            "line_items": [item.to_dict() for item in self.line_items],
            "monthly_equivalent": str(self.monthly_equivalent),
            "subtotal_before_kombo": str(self.subtotal_before_kombo),
            "kombo_applied": self.kombo_applied,
            "kombo_name": self.kombo_name,
            "kombo_discount_rate": str(self.kombo_discount_rate),
            "kombo_discount_amount": str(self.kombo_discount_amount),
            "implementation_fee": str(self.implementation_fee),
            "implementation_waived_units": self.implementation_waived_units,
            "implementation_items": [
                {"item_id": i.item_id, "label": i.label, "fee": str(i.fee), "waived": i.waived}
                for i in self.implementation_items
            ],
            "final_total": str(self.final_total),
            "vip_support_included": self.vip_support_included,
            "dedicated_cs_included": self.dedicated_cs_included,
            "installments": self.installments,
            "installment_amount": str(self.installment_amount),
            "installment_schedule": [str(a) for a in self.installment_schedule],
            "prepaid_items": [item.to_dict() for item in self.prepaid_items],
            "prepaid_total": str(self.prepaid_total),
            "postpaid_items": [item.to_dict() for item in self.postpaid_items],
            "postpaid_monthly": str(self.postpaid_monthly),
        }


__all__ = [
    "PaymentFrequency",
    "PremiumServiceId",
    "OverageBilling",
    "TraceStep",
    "Selection",
    "LineItem",
    "ImplementationItem",
    "PrepaidItem",
    "PostPaidItem",
    "PriceBreakdown",
]
