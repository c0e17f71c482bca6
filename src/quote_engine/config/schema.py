"""
Pricing configuration document.

A PricingConfig is an immutable snapshot of everything the engine prices
with: product lines and their plans, add-ons, payment frequencies, Kombo
definitions, premium services and the rounding convention. Documents are
JSON files validated with pydantic; structural problems pydantic cannot see
(tier gaps, plan ordering) are checked in ``check_integrity``.
"""
import json
from decimal import Decimal
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as SchemaError

from ..errors import ConfigurationError


class PaymentFrequency(str, Enum):
    MONTHLY = "monthly"
    SEMESTRAL = "semestral"
    ANNUAL = "annual"
    BIENNIAL = "biennial"


class PremiumServiceId(str, Enum):
    VIP_SUPPORT = "vip_support"
    DEDICATED_CS = "dedicated_cs"


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


def _read_only(value: Mapping) -> Mapping:
    # frozen=True only blocks attribute assignment, not item assignment
    return MappingProxyType(dict(value))


class UnitPriceStep(_Snapshot):
    """One marginal price band; ``to_unit=None`` means unbounded."""
    from_unit: int = Field(ge=1)
    to_unit: Optional[int] = None
    unit_price: Decimal = Field(ge=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.to_unit is not None and self.to_unit < self.from_unit:
            raise ValueError(f"to_unit {self.to_unit} is below from_unit {self.from_unit}")
        return self


class PlanTier(_Snapshot):
    plan_id: str
    name: str
    included_units: int = Field(ge=0)
    base_price: Decimal = Field(ge=0)
    vip_included: bool = False
    dedicated_cs_included: bool = False
    unit_steps: tuple[UnitPriceStep, ...]


class ProductLine(_Snapshot):
    line_id: str
    name: str
    unit_label: str = "units"
    implementation_fee: Decimal = Field(default=Decimal("0"), ge=0)
    # Ascending capability order
    plans: tuple[PlanTier, ...] = Field(min_length=1)

    def plan(self, plan_id: str) -> Optional[PlanTier]:
        for plan in self.plans:
            if plan.plan_id == plan_id:
                return plan
        return None

    @property
    def entry_plan(self) -> PlanTier:
        return self.plans[0]


class AddOn(_Snapshot):
    addon_id: str
    name: str
    eligibility: frozenset[str] = Field(min_length=1)
    pricing_mode: Literal["flat", "tiered"] = "flat"
    price: Decimal = Field(ge=0)
    included_units: int = Field(default=0, ge=0)
    unit_steps: tuple[UnitPriceStep, ...] = ()
    implementation_fee: Decimal = Field(default=Decimal("0"), ge=0)

    @model_validator(mode="after")
    def _check_mode(self):
        if self.pricing_mode == "tiered" and not self.unit_steps:
            raise ValueError("tiered add-ons need unit_steps")
        if self.pricing_mode == "flat" and self.unit_steps:
            raise ValueError("flat add-ons cannot declare unit_steps")
        return self


class FrequencyTerms(_Snapshot):
    """Billing terms for one payment frequency."""
    cycle_months: int = Field(ge=1)
    multiplier: Decimal = Field(default=Decimal("1"), gt=0)
    discount_rate: Decimal = Field(default=Decimal("0"), ge=0, lt=1)
    allowed_installments: tuple[int, ...] = (1,)
    # Months of overage a customer may pay up front; 0 means pre-paying is not offered
    prepaid_months: int = Field(default=0, ge=0)
    prepaid_discount_rate: Decimal = Field(default=Decimal("0"), ge=0, lt=1)

    @model_validator(mode="after")
    def _check_installments(self):
        if not self.allowed_installments or min(self.allowed_installments) < 1:
            raise ValueError("allowed_installments must hold positive counts")
        if list(self.allowed_installments) != sorted(set(self.allowed_installments)):
            raise ValueError("allowed_installments must be ascending and unique")
        return self


class KomboDefinition(_Snapshot):
    kombo_id: str
    name: str
    required_products: frozenset[str] = Field(min_length=1)
    required_add_ons: frozenset[str] = frozenset()
    discount_rate: Decimal = Field(default=Decimal("0"), ge=0, lt=1)
    free_implementation_units: int = Field(default=0, ge=0)
    # Items (product line or add-on ids) waived before any others
    waived_implementations: tuple[str, ...] = ()
    precedence_rank: int = 0
    grants_vip: bool = False
    grants_dedicated_cs: bool = False

    def specificity(self) -> tuple[int, int]:
        return len(self.required_add_ons), len(self.required_products)


class PremiumService(_Snapshot):
    service_id: PremiumServiceId
    name: str
    monthly_price: Decimal = Field(ge=0)


class UsageMeter(_Snapshot):
    """
    Post-paid charge on monthly volume (Kenlo Pay boletos and splits).

    Every unit is billable, priced on the step table of the plan selected for
    ``line_id``. Never part of the recurring subscription.
    """
    meter_id: str
    name: str
    line_id: str
    requires_add_on: Optional[str] = None
    unit_label: str = "units"
    plan_steps: Mapping[str, tuple[UnitPriceStep, ...]]

    @field_validator("plan_steps", mode="after")
    @classmethod
    def _freeze_plan_steps(cls, value):
        return _read_only(value)


class RoundingConvention(_Snapshot):
    target_digit: int = Field(default=7, ge=0, le=9)
    money_places: int = Field(default=2, ge=0, le=6)


class PricingConfig(_Snapshot):
    """Immutable pricing snapshot, identified by an opaque version string."""
    version: str = Field(min_length=1)
    currency: str = "BRL"
    rounding: RoundingConvention = RoundingConvention()
    product_lines: tuple[ProductLine, ...] = Field(min_length=1)
    add_ons: tuple[AddOn, ...] = ()
    frequencies: Mapping[PaymentFrequency, FrequencyTerms]
    kombos: tuple[KomboDefinition, ...] = ()
    premium_services: tuple[PremiumService, ...] = ()
    usage_meters: tuple[UsageMeter, ...] = ()

    @field_validator("frequencies", mode="after")
    @classmethod
    def _freeze_frequencies(cls, value):
        return _read_only(value)

    def product_line(self, line_id: str) -> Optional[ProductLine]:
        for line in self.product_lines:
            if line.line_id == line_id:
                return line
        return None

    def add_on(self, addon_id: str) -> Optional[AddOn]:
        for add_on in self.add_ons:
            if add_on.addon_id == addon_id:
                return add_on
        return None

    def premium_service(self, service_id: str) -> Optional[PremiumService]:
        for service in self.premium_services:
            if service.service_id == service_id:
                return service
        return None

    def usage_meter(self, meter_id: str) -> Optional[UsageMeter]:
        for meter in self.usage_meters:
            if meter.meter_id == meter_id:
                return meter
        return None

    def frequency_terms(self, frequency: PaymentFrequency) -> FrequencyTerms:
        terms = self.frequencies.get(PaymentFrequency(frequency))
        if terms is None:
            raise ConfigurationError(
                f"no terms configured for frequency '{PaymentFrequency(frequency).value}'",
                path="frequencies",
            )
        return terms

    @property
    def line_ids(self) -> frozenset[str]:
        return frozenset(line.line_id for line in self.product_lines)

    @property
    def addon_ids(self) -> frozenset[str]:
        return frozenset(add_on.addon_id for add_on in self.add_ons)


def check_integrity(config: PricingConfig) -> PricingConfig:
    """
    Cross-field checks that a schema cannot express.

    Raises ConfigurationError on the first problem found.
    """
    from ..engine.tiers import validate_steps

    seen_lines = set()
    for line in config.product_lines:
        if line.line_id in seen_lines:
            raise ConfigurationError("duplicate product line", path=f"product_lines.{line.line_id}")
        seen_lines.add(line.line_id)

        seen_plans = set()
        previous = None
        for plan in line.plans:
            path = f"product_lines.{line.line_id}.plans.{plan.plan_id}"
            if plan.plan_id in seen_plans:
                raise ConfigurationError("duplicate plan", path=path)
            seen_plans.add(plan.plan_id)
            validate_steps(plan.unit_steps, plan.included_units, path=f"{path}.unit_steps")

            # Upgrading must never take a free service away
            if previous is not None:
                if previous.vip_included and not plan.vip_included:
                    raise ConfigurationError(
                        f"plan drops vip support included in '{previous.plan_id}'", path=path
                    )
                if previous.dedicated_cs_included and not plan.dedicated_cs_included:
                    raise ConfigurationError(
                        f"plan drops dedicated CS included in '{previous.plan_id}'", path=path
                    )
            previous = plan

    seen_addons = set()
    for add_on in config.add_ons:
        path = f"add_ons.{add_on.addon_id}"
        if add_on.addon_id in seen_addons:
            raise ConfigurationError("duplicate add-on", path=path)
        seen_addons.add(add_on.addon_id)
        unknown = add_on.eligibility - seen_lines
        if unknown:
            raise ConfigurationError(
                f"eligibility names unknown product lines {sorted(unknown)}", path=path
            )
        if add_on.pricing_mode == "tiered":
            validate_steps(add_on.unit_steps, add_on.included_units, path=f"{path}.unit_steps")

    seen_kombos = set()
    for kombo in config.kombos:
        path = f"kombos.{kombo.kombo_id}"
        if kombo.kombo_id in seen_kombos:
            raise ConfigurationError("duplicate kombo", path=path)
        seen_kombos.add(kombo.kombo_id)
        if kombo.required_products - seen_lines:
            raise ConfigurationError(
                f"requires unknown products {sorted(kombo.required_products - seen_lines)}", path=path
            )
        if kombo.required_add_ons - seen_addons:
            raise ConfigurationError(
                f"requires unknown add-ons {sorted(kombo.required_add_ons - seen_addons)}", path=path
            )
        unknown_waivers = set(kombo.waived_implementations) - seen_lines - seen_addons
        if unknown_waivers:
            raise ConfigurationError(
                f"waives unknown items {sorted(unknown_waivers)}", path=path
            )

    seen_meters = set()
    for meter in config.usage_meters:
        path = f"usage_meters.{meter.meter_id}"
        if meter.meter_id in seen_meters:
            raise ConfigurationError("duplicate usage meter", path=path)
        seen_meters.add(meter.meter_id)
        line = config.product_line(meter.line_id)
        if line is None:
            raise ConfigurationError(f"meters unknown product line '{meter.line_id}'", path=path)
        if meter.requires_add_on is not None and meter.requires_add_on not in seen_addons:
            raise ConfigurationError(f"requires unknown add-on '{meter.requires_add_on}'", path=path)
        for plan in line.plans:
            steps = meter.plan_steps.get(plan.plan_id)
            if steps is None:
                raise ConfigurationError(f"no step table for plan '{plan.plan_id}'", path=path)
            # Metered volume has no included allotment
            validate_steps(steps, 0, path=f"{path}.plan_steps.{plan.plan_id}")

    return config


def parse_pricing_config(document: dict) -> PricingConfig:
    """Validate a decoded config document into a PricingConfig."""
    try:
        config = PricingConfig.model_validate(document)
    except SchemaError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(
            f"{first['msg']} ({e.error_count()} schema error(s))", path=location or None
        ) from e
    return check_integrity(config)


def load_pricing_config(path: Union[str, Path]) -> PricingConfig:
    """Read and validate a JSON pricing document from disk."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"pricing config not found at {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"invalid JSON: {e}", path=str(path)) from e
    return parse_pricing_config(document)
