"""
Kombo Comparison - side-by-side pricing of a selection and its Kombo variants.

Each Kombo column prices the selection completed with whatever that Kombo
requires (new products start on their line's entry plan), so a salesperson
can see what adding the missing pieces would cost or save.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import pandas as pd

from ..config.schema import KomboDefinition, PaymentFrequency, PricingConfig
from ..engine.kombo_matcher import detect_kombo, missing_requirements, precedence_key
from ..engine.models import OverageBilling, PriceBreakdown, Selection
from ..engine.pricing_engine import calculate_price


@dataclass(frozen=True)
class KomboRecommendation:
    """Cheapest Kombo upgrade for a selection that has none."""
    kombo_id: str
    kombo_name: str
    added_products: tuple[str, ...]
    added_add_ons: tuple[str, ...]
    savings: Decimal
    breakdown: PriceBreakdown

    @property
    def message(self) -> str:
        added = self.added_products + self.added_add_ons
        if not added:
            return f"Activate {self.kombo_name} and save {self.savings}"
        return f"Add {', '.join(added)} and activate {self.kombo_name} to save {self.savings}"


def complete_for_kombo(selection: Selection, kombo: KomboDefinition, config: PricingConfig) -> Selection:
    """The selection plus every product and add-on ``kombo`` requires."""
    missing_products, missing_add_ons = missing_requirements(kombo, selection)
    plans = dict(selection.plans)
    for line_id in missing_products:
        line = config.product_line(line_id)
        plans[line_id] = line.entry_plan.plan_id
    return selection.with_changes(
        products=selection.products | kombo.required_products,
        add_ons=selection.add_ons | kombo.required_add_ons,
        plans=plans,
    )


def _row(scenario: str, selection: Selection, breakdown: PriceBreakdown, added=()) -> dict:
    return {
        "scenario": scenario,
        # Empty string when no Kombo applies
        "kombo": breakdown.kombo_applied or "",
        "products": "+".join(sorted(selection.products)),
        "add_ons": "+".join(sorted(selection.add_ons)),
        "added": "+".join(added),
        "monthly_equivalent": float(breakdown.monthly_equivalent),
        "subtotal": float(breakdown.subtotal_before_kombo),
        "discount": float(breakdown.kombo_discount_amount),
        "final_total": float(breakdown.final_total),
        "implementation_fee": float(breakdown.implementation_fee),
        "first_cycle_total": float(breakdown.first_cycle_total),
        "prepaid_total": float(breakdown.prepaid_total),
        "postpaid_monthly": float(breakdown.postpaid_monthly),
        "vip": breakdown.vip_support_included,
        "dedicated_cs": breakdown.dedicated_cs_included,
    }


def kombo_comparison(selection: Selection, config: PricingConfig) -> pd.DataFrame:
    """
    One row for the selection as-is, then one per Kombo in precedence order.

    The ``kombo`` column is the Kombo actually applied, which can differ from
    the scenario when completing the selection qualifies it for a better one.
    """
    rows = [_row("current", selection, calculate_price(selection, config))]

    for kombo in sorted(config.kombos, key=precedence_key):
        completed = complete_for_kombo(selection, kombo, config)
        missing_products, missing_add_ons = missing_requirements(kombo, selection)
        added = sorted(missing_products) + sorted(missing_add_ons)
        rows.append(_row(kombo.kombo_id, completed, calculate_price(completed, config), added))

    return pd.DataFrame(rows)


def frequency_comparison(selection: Selection, config: PricingConfig) -> pd.DataFrame:
    """Price the same selection under every configured payment frequency."""
    rows = []
    for frequency in PaymentFrequency:
        if frequency not in config.frequencies:
            continue
        terms = config.frequencies[frequency]
        billing = dict(selection.overage_billing)
        if not terms.prepaid_months:
            # Overage cannot be pre-paid here; it falls back to post-paid
            billing = {
                item_id: OverageBilling.POSTPAID if mode is OverageBilling.PREPAID else mode
                for item_id, mode in billing.items()
            }
        breakdown = calculate_price(
            selection.with_changes(frequency=frequency, installments=1, overage_billing=billing), config
        )
        rows.append({
            "frequency": frequency.value,
            "cycle_months": terms.cycle_months,
            "max_installments": max(terms.allowed_installments),
            "final_total": float(breakdown.final_total),
            "per_month": float(breakdown.final_total / terms.cycle_months),
            "implementation_fee": float(breakdown.implementation_fee),
            "prepaid_total": float(breakdown.prepaid_total),
            "postpaid_monthly": float(breakdown.postpaid_monthly),
        })

    frame = pd.DataFrame(rows)
    if not frame.empty and "monthly" in frame["frequency"].values:
        monthly_rate = frame.loc[frame["frequency"] == "monthly", "per_month"].iloc[0]
        frame["savings_vs_monthly_pct"] = ((1 - frame["per_month"] / monthly_rate) * 100).round(1)
    return frame


def recommend_kombo(
    selection: Selection, config: PricingConfig, min_savings: Decimal = Decimal("50")
) -> Optional[KomboRecommendation]:
    """
    Best Kombo to suggest for a selection that has none.

    Savings compare the first billing cycle (recurring total plus
    implementation) at the selection's frequency. Returns None when a Kombo
    already applies or nothing saves more than ``min_savings``.
    """
    if detect_kombo(selection, config) is not None:
        return None

    current = calculate_price(selection, config)
    best = None
    for kombo in sorted(config.kombos, key=precedence_key):
        completed = complete_for_kombo(selection, kombo, config)
        breakdown = calculate_price(completed, config)
        if breakdown.kombo_applied != kombo.kombo_id:
            continue

        savings = current.first_cycle_total - breakdown.first_cycle_total
        if savings > min_savings and (best is None or savings > best.savings):
            missing_products, missing_add_ons = missing_requirements(kombo, selection)
            best = KomboRecommendation(
                kombo_id=kombo.kombo_id,
                kombo_name=kombo.name,
                added_products=tuple(sorted(missing_products)),
                added_add_ons=tuple(sorted(missing_add_ons)),
                savings=savings,
                breakdown=breakdown,
            )
    return best


def breakdown_frame(breakdown: PriceBreakdown) -> pd.DataFrame:
    """Line items of a breakdown as a table."""
    return pd.DataFrame(
        [
            {
                "label": item.label,
                "kind": item.kind,
                "item_id": item.item_id,
                "quantity": item.quantity,
                "billable_units": item.billable_units,
                "base_amount": float(item.base_amount),
                "adjusted_amount": float(item.adjusted_amount),
            }
            for item in breakdown.line_items
        ],
        columns=["label", "kind", "item_id", "quantity", "billable_units", "base_amount", "adjusted_amount"],
    )
