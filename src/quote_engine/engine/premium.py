"""
Premium service eligibility (VIP support, dedicated customer success).

A service is free when any selected plan includes it at its tier, since the
benefit carries across every product the client uses, or when the selection
qualifies for a Kombo that grants it. Both services are judged independently.
"""
from ..config.schema import PremiumServiceId, PricingConfig
from .kombo_matcher import matching_kombos
from .models import Selection


_PLAN_FLAG = {
    PremiumServiceId.VIP_SUPPORT: "vip_included",
    PremiumServiceId.DEDICATED_CS: "dedicated_cs_included",
}

_KOMBO_FLAG = {
    PremiumServiceId.VIP_SUPPORT: "grants_vip",
    PremiumServiceId.DEDICATED_CS: "grants_dedicated_cs",
}


def _selected_plans(selection: Selection, config: PricingConfig):
    for line_id in sorted(selection.products):
        line = config.product_line(line_id)
        if line is None:
            continue
        plan = line.plan(selection.plans.get(line_id, ""))
        if plan is not None:
            yield plan


def is_service_included(service: PremiumServiceId, selection: Selection, config: PricingConfig) -> bool:
    service = PremiumServiceId(service)

    plan_flag = _PLAN_FLAG[service]
    if any(getattr(plan, plan_flag) for plan in _selected_plans(selection, config)):
        return True

    # Every matching Kombo counts, not only the applied one
    kombo_flag = _KOMBO_FLAG[service]
    return any(getattr(m.kombo, kombo_flag) for m in matching_kombos(selection, config))


def is_vip_included(selection: Selection, config: PricingConfig) -> bool:
    return is_service_included(PremiumServiceId.VIP_SUPPORT, selection, config)


def is_dedicated_cs_included(selection: Selection, config: PricingConfig) -> bool:
    return is_service_included(PremiumServiceId.DEDICATED_CS, selection, config)
