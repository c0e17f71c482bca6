"""
Pricing Engine - assembles an itemized quote for a selection.

Resolution order:
1. Validate the selection against the config (products, plans, add-ons, billing)
2. Price one line per product (plan base + tiered overage) and per add-on;
   overage billed pre-paid or post-paid leaves the subscription line
3. Sum to a monthly equivalent and apply the payment frequency terms
4. Detect the Kombo and apply its discount to the adjusted total
5. Round the final total once, to the configured convention
6. Flag free premium services and compute the implementation fee
7. Collect pre-paid overage (due up front) and post-paid charges (billed on usage)
"""
import logging
from decimal import Decimal
from typing import Optional

from ..config.provider import PricingConfigProvider
from ..config.schema import KomboDefinition, PremiumServiceId, PricingConfig
from ..config.settings import Settings, get_settings
from ..errors import StaleConfigError, ValidationError
from .frequency import apply_frequency, check_installments, cycle_factor
from .kombo_matcher import detect_kombo
from .models import (
    ImplementationItem,
    LineItem,
    OverageBilling,
    PostPaidItem,
    PrepaidItem,
    PriceBreakdown,
    Selection,
    TraceStep,
)
from .premium import is_dedicated_cs_included, is_vip_included
from .rounding import quantize_money, round_to_convention
from .tiers import UnitsCharge, price_steps

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def validate_selection(selection: Selection, config: PricingConfig):
    """
    Check business rules a type cannot express.

    Raises ValidationError with the offending field and the allowed values.
    """
    if not selection.products:
        raise ValidationError(
            "select at least one product", field="products", value=[], allowed=config.line_ids
        )

    for line_id in sorted(selection.products):
        line = config.product_line(line_id)
        if line is None:
            raise ValidationError(
                f"unknown product '{line_id}'", field="products", value=line_id, allowed=config.line_ids
            )
        plan_ids = [plan.plan_id for plan in line.plans]
        plan_id = selection.plans.get(line_id)
        if plan_id is None:
            raise ValidationError(
                f"no plan selected for {line.name}", field=f"plans.{line_id}", allowed=plan_ids
            )
        if line.plan(plan_id) is None:
            raise ValidationError(
                f"unknown plan '{plan_id}' for {line.name}",
                field=f"plans.{line_id}",
                value=plan_id,
                allowed=plan_ids,
            )
        units = selection.unit_counts.get(line_id)
        if units is not None and units < 0:
            raise ValidationError(
                f"{line.unit_label} count cannot be negative", field=f"unit_counts.{line_id}", value=units
            )

    # Every plan and unit count must belong to a selected product
    for mapping_name in ("plans", "unit_counts"):
        for line_id, value in sorted(getattr(selection, mapping_name).items()):
            if line_id not in selection.products:
                raise ValidationError(
                    f"'{line_id}' is not a selected product",
                    field=f"{mapping_name}.{line_id}",
                    value=value,
                    allowed=selection.products,
                )

    for addon_id in sorted(selection.add_ons):
        add_on = config.add_on(addon_id)
        if add_on is None:
            raise ValidationError(
                f"unknown add-on '{addon_id}'", field="add_ons", value=addon_id, allowed=config.addon_ids
            )
        if not add_on.eligibility & selection.products:
            raise ValidationError(
                f"{add_on.name} is not available for the selected products",
                field="add_ons",
                value=addon_id,
                allowed=add_on.eligibility,
            )

    for addon_id, units in selection.add_on_units.items():
        if addon_id not in selection.add_ons:
            raise ValidationError(
                f"units given for add-on '{addon_id}' which is not selected",
                field=f"add_on_units.{addon_id}",
                value=units,
                allowed=selection.add_ons,
            )
        if units < 0:
            raise ValidationError(
                "unit count cannot be negative", field=f"add_on_units.{addon_id}", value=units
            )

    for service_id in sorted(selection.premium_services):
        if config.premium_service(service_id) is None:
            raise ValidationError(
                f"unknown premium service '{service_id}'",
                field="premium_services",
                value=service_id,
                allowed=[s.service_id.value for s in config.premium_services],
            )

    check_installments(selection.frequency, selection.installments, config)

    tiered = set(selection.products) | {
        a.addon_id for a in config.add_ons
        if a.addon_id in selection.add_ons and a.pricing_mode == "tiered"
    }
    terms = config.frequency_terms(selection.frequency)
    for item_id, mode in sorted(selection.overage_billing.items()):
        if item_id not in tiered:
            raise ValidationError(
                f"'{item_id}' is not a selected product or tiered add-on",
                field=f"overage_billing.{item_id}",
                value=mode.value,
                allowed=tiered,
            )
        if mode is OverageBilling.PREPAID and not terms.prepaid_months:
            raise ValidationError(
                f"pre-paid overage is not offered for {selection.frequency.value} billing",
                field=f"overage_billing.{item_id}",
                value=mode.value,
                allowed=[f.value for f, t in config.frequencies.items() if t.prepaid_months],
            )

    for meter_id, volume in sorted(selection.usage.items()):
        meter = config.usage_meter(meter_id)
        if meter is None:
            raise ValidationError(
                f"unknown usage meter '{meter_id}'",
                field="usage",
                value=meter_id,
                allowed=[m.meter_id for m in config.usage_meters],
            )
        if volume < 0:
            raise ValidationError("usage cannot be negative", field=f"usage.{meter_id}", value=volume)
        if meter.line_id not in selection.products or (
            meter.requires_add_on is not None and meter.requires_add_on not in selection.add_ons
        ):
            needed = [meter.line_id] + ([meter.requires_add_on] if meter.requires_add_on else [])
            raise ValidationError(
                f"{meter.name} needs {' and '.join(needed)} selected",
                field=f"usage.{meter_id}",
                value=volume,
                allowed=needed,
            )


def _implementation_items(
    selection: Selection, config: PricingConfig, kombo: Optional[KomboDefinition]
) -> tuple[ImplementationItem, ...]:
    """One-time fees per product and add-on, with the Kombo's waivers applied."""
    candidates = []
    for line in config.product_lines:
        if line.line_id in selection.products:
            candidates.append((line.line_id, f"Implementation {line.name}", line.implementation_fee))
    for add_on in config.add_ons:
        if add_on.addon_id in selection.add_ons:
            candidates.append((add_on.addon_id, f"Implementation {add_on.name}", add_on.implementation_fee))

    waived = set()
    if kombo is not None and kombo.free_implementation_units:
        chargeable = [c for c in candidates if c[2] > 0]
        listed = [item_id for item_id in kombo.waived_implementations
                  if any(c[0] == item_id for c in chargeable)]
        # Listed items first, then the most expensive of the rest
        rest = sorted((c for c in chargeable if c[0] not in listed), key=lambda c: -c[2])
        order = listed + [c[0] for c in rest]
        waived = set(order[:kombo.free_implementation_units])

    return tuple(
        ImplementationItem(item_id=item_id, label=label, fee=fee, waived=item_id in waived)
        for item_id, label, fee in candidates
    )


def _route_overage(
    item_id: str,
    label: str,
    units: UnitsCharge,
    selection: Selection,
    config: PricingConfig,
    prepaid: list,
    postpaid: list,
    trace: list,
) -> UnitsCharge:
    """
    Send a line's overage where its billing mode says.

    Returns the part that stays on the subscription line: all of it when
    recurring, nothing when pre-paid or post-paid. Pre-paid overage is charged
    ``monthly × (1 − prepaid_discount_rate) × prepaid_months`` up front.
    """
    mode = selection.billing_for(item_id)
    if mode is OverageBilling.RECURRING:
        return units

    if units.billable_units:
        if mode is OverageBilling.PREPAID:
            terms = config.frequency_terms(selection.frequency)
            amount = quantize_money(
                units.total * (1 - terms.prepaid_discount_rate) * terms.prepaid_months,
                config.rounding.money_places,
            )
            prepaid.append(PrepaidItem(
                item_id=item_id,
                label=label,
                billable_units=units.billable_units,
                monthly_amount=units.total,
                months=terms.prepaid_months,
                discount_rate=terms.prepaid_discount_rate,
                amount=amount,
            ))
            trace.append(TraceStep(
                "Pre-paid",
                f"{label}: {terms.prepaid_months} month(s) at {terms.prepaid_discount_rate * 100:.0f}% off",
                f"{amount}",
            ))
        else:
            postpaid.append(PostPaidItem(
                item_id=item_id,
                label=label,
                kind="overage",
                billable_units=units.billable_units,
                monthly_amount=units.total,
                step_charges=units.step_charges,
            ))
            trace.append(TraceStep("Post-paid", f"{label} per month", f"{units.total}"))

    return UnitsCharge(
        requested_units=units.requested_units,
        included_units=units.included_units,
        billable_units=0,
        total=ZERO,
    )


def calculate_price(selection: Selection, config: PricingConfig) -> PriceBreakdown:
    """
    Calculate a fully itemized price for a selection.

    Pure: the same selection and config always produce the same breakdown.
    """
    validate_selection(selection, config)
    trace = [TraceStep("Config", "Pricing config version", config.version)]

    terms = config.frequency_terms(selection.frequency)
    factor = cycle_factor(selection.frequency, config)
    trace.append(TraceStep(
        "Frequency",
        f"{selection.frequency.value}: {terms.cycle_months} month(s) per cycle",
        f"x{factor}",
    ))

    line_items = []
    prepaid = []
    postpaid = []

    # Products, in config order
    for line in config.product_lines:
        if line.line_id not in selection.products:
            continue
        plan = line.plan(selection.plans[line.line_id])
        requested = selection.unit_counts.get(line.line_id, plan.included_units)
        units = price_steps(plan.unit_steps, plan.included_units, requested)
        label = f"{line.name} {plan.name}"
        recurring = _route_overage(
            line.line_id, f"Additional {line.unit_label} ({label})", units, selection, config, prepaid, postpaid, trace
        )
        base = plan.base_price + recurring.total
        line_items.append(LineItem(
            label=label,
            kind="product",
            item_id=line.line_id,
            base_amount=base,
            adjusted_amount=base * factor,
            quantity=requested,
            billable_units=recurring.billable_units,
            step_charges=recurring.step_charges,
        ))
        trace.append(TraceStep("Plan", f"{label} base price", f"{plan.base_price}"))
        if recurring.billable_units:
            trace.append(TraceStep(
                "Tiered Units",
                f"{units.billable_units} additional {line.unit_label} across {len(units.step_charges)} step(s)",
                f"{units.total}",
            ))

    # Add-ons, in config order
    for add_on in config.add_ons:
        if add_on.addon_id not in selection.add_ons:
            continue
        base = add_on.price
        quantity = None
        billable = 0
        steps = ()
        if add_on.pricing_mode == "tiered":
            quantity = selection.add_on_units.get(add_on.addon_id, add_on.included_units)
            units = price_steps(add_on.unit_steps, add_on.included_units, quantity)
            recurring = _route_overage(
                add_on.addon_id, f"Additional units ({add_on.name})", units, selection, config,
                prepaid, postpaid, trace,
            )
            base += recurring.total
            billable = recurring.billable_units
            steps = recurring.step_charges
        line_items.append(LineItem(
            label=add_on.name,
            kind="add_on",
            item_id=add_on.addon_id,
            base_amount=base,
            adjusted_amount=base * factor,
            quantity=quantity,
            billable_units=billable,
            step_charges=steps,
        ))
        trace.append(TraceStep("Add-on", f"{add_on.name} ({add_on.pricing_mode})", f"{base}"))

    vip_included = is_vip_included(selection, config)
    cs_included = is_dedicated_cs_included(selection, config)
    included = {
        PremiumServiceId.VIP_SUPPORT: vip_included,
        PremiumServiceId.DEDICATED_CS: cs_included,
    }

    # Premium services the customer asked for and does not get for free
    for service in config.premium_services:
        if service.service_id.value not in selection.premium_services:
            continue
        if included[service.service_id]:
            trace.append(TraceStep("Premium", f"{service.name} included at no cost"))
            continue
        line_items.append(LineItem(
            label=service.name,
            kind="premium_service",
            item_id=service.service_id.value,
            base_amount=service.monthly_price,
            adjusted_amount=service.monthly_price * factor,
        ))
        trace.append(TraceStep("Premium", f"{service.name} charged", f"{service.monthly_price}"))

    # Metered volume, priced on the selected plan's table and always post-paid
    for meter in config.usage_meters:
        volume = selection.usage.get(meter.meter_id)
        if not volume:
            continue
        plan_id = selection.plans[meter.line_id]
        units = price_steps(meter.plan_steps[plan_id], 0, volume)
        postpaid.append(PostPaidItem(
            item_id=meter.meter_id,
            label=meter.name,
            kind="usage",
            billable_units=units.billable_units,
            monthly_amount=units.total,
            step_charges=units.step_charges,
        ))
        trace.append(TraceStep(
            "Post-paid", f"{meter.name}: {volume} {meter.unit_label} per month", f"{units.total}"
        ))

    monthly_equivalent = sum((item.base_amount for item in line_items), ZERO)
    adjustment = apply_frequency(monthly_equivalent, selection.frequency, config, selection.installments)
    subtotal = adjustment.total_for_cycle
    trace.append(TraceStep("Subtotal", f"Monthly equivalent {monthly_equivalent} adjusted for frequency", f"{subtotal}"))

    kombo = detect_kombo(selection, config)
    discount_rate = kombo.discount_rate if kombo is not None else ZERO
    discounted = subtotal * (1 - discount_rate)
    if kombo is not None:
        trace.append(TraceStep("Kombo", f"{kombo.name} ({discount_rate * 100:.0f}% off)", f"-{subtotal - discounted}"))
    else:
        trace.append(TraceStep("Kombo", "No Kombo matched"))

    final_total = round_to_convention(discounted, config.rounding.target_digit)
    trace.append(TraceStep(
        "Rounding", f"Rounded up to end in {config.rounding.target_digit}", f"{final_total}"
    ))

    implementation = _implementation_items(selection, config, kombo)
    implementation_fee = max(ZERO, sum((i.fee for i in implementation if not i.waived), ZERO))
    waived_units = sum(1 for i in implementation if i.waived)
    trace.append(TraceStep(
        "Implementation", f"{waived_units} implementation(s) waived", f"{implementation_fee}"
    ))

    installment_amount = quantize_money(final_total / selection.installments, config.rounding.money_places)
    first_installment = final_total - installment_amount * (selection.installments - 1)
    if selection.installments > 1:
        trace.append(TraceStep(
            "Installments",
            f"{selection.installments}x, first installment {first_installment}",
            f"{installment_amount}",
        ))

    prepaid_total = sum((item.amount for item in prepaid), ZERO)
    postpaid_monthly = sum((item.monthly_amount for item in postpaid), ZERO)

    breakdown = PriceBreakdown(
        line_items=tuple(line_items),
        monthly_equivalent=monthly_equivalent,
        subtotal_before_kombo=subtotal,
        kombo_applied=kombo.kombo_id if kombo is not None else None,
        kombo_name=kombo.name if kombo is not None else None,
        kombo_discount_rate=discount_rate,
        kombo_discount_amount=subtotal - discounted,
        implementation_fee=implementation_fee,
        implementation_waived_units=waived_units,
        implementation_items=implementation,
        final_total=final_total,
        vip_support_included=vip_included,
        dedicated_cs_included=cs_included,
        frequency=selection.frequency,
        installments=selection.installments,
        installment_amount=installment_amount,
        config_version=config.version,
        trace=tuple(trace),
        first_installment_amount=first_installment,
        prepaid_items=tuple(prepaid),
        prepaid_total=prepaid_total,
        postpaid_items=tuple(postpaid),
        postpaid_monthly=postpaid_monthly,
    )
    logger.debug(
        "Priced %s (%s) with config %s: total=%s kombo=%s",
        sorted(selection.products), selection.frequency.value, config.version,
        final_total, breakdown.kombo_applied,
    )
    return breakdown


class PricingEngine:
    """
    Quote engine bound to a config provider.

    Every call fetches the provider's current snapshot, so a new pricing
    version is picked up at the next call boundary. Nothing is kept between
    calls.
    """

    def __init__(self, provider=None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.provider = provider or PricingConfigProvider(self.settings.pricing_config_path)

    @property
    def config(self) -> PricingConfig:
        return self.provider.get()

    def reload_data(self):
        """Forget the cached pricing snapshot."""
        self.provider.invalidate()

    def calculate(self, selection: Selection, expected_version: Optional[str] = None) -> PriceBreakdown:
        """
        Price a selection against the current config.

        When ``expected_version`` is given and differs from the current
        version, raises StaleConfigError instead of pricing.
        """
        config = self.provider.get()
        if expected_version is not None and expected_version != config.version:
            raise StaleConfigError(expected_version, config.version)
        return calculate_price(selection, config)
