"""
Kombo Matcher - Detects which bundle a selection qualifies for.

Kombo definitions are a declarative list in the pricing config. A definition
matches when every required product and add-on is selected; among matches
the highest precedence rank wins, then the most specific definition.
"""
from dataclasses import dataclass
from typing import Optional

from ..config.schema import KomboDefinition, PricingConfig
from .models import Selection


@dataclass(frozen=True)
class MatchedKombo:
    """A Kombo definition that matched with context."""
    kombo: KomboDefinition
    match_reason: str

    @property
    def kombo_id(self) -> str:
        return self.kombo.kombo_id


def precedence_key(kombo: KomboDefinition) -> tuple:
    """
    Sort key, best first: higher rank, then more required add-ons, then more
    required products. The id keeps ordering total for identical definitions.
    """
    addon_count, product_count = kombo.specificity()
    return (-kombo.precedence_rank, -addon_count, -product_count, kombo.kombo_id)


def missing_requirements(kombo: KomboDefinition, selection: Selection) -> tuple[frozenset, frozenset]:
    """Products and add-ons the selection still lacks for ``kombo``."""
    return (
        kombo.required_products - selection.products,
        kombo.required_add_ons - selection.add_ons,
    )


def matching_kombos(selection: Selection, config: PricingConfig) -> list[MatchedKombo]:
    """
    Find every Kombo definition the selection fully satisfies.

    Returns matches sorted best first.
    """
    matched = []
    for kombo in config.kombos:
        missing_products, missing_add_ons = missing_requirements(kombo, selection)
        if missing_products or missing_add_ons:
            continue

        reasons = [f"products={'+'.join(sorted(kombo.required_products))}"]
        if kombo.required_add_ons:
            reasons.append(f"add_ons={'+'.join(sorted(kombo.required_add_ons))}")
        matched.append(MatchedKombo(kombo=kombo, match_reason=", ".join(reasons)))

    matched.sort(key=lambda m: precedence_key(m.kombo))
    return matched


def detect_kombo(selection: Selection, config: PricingConfig) -> Optional[KomboDefinition]:
    """The single Kombo applied to a selection, or None."""
    matches = matching_kombos(selection, config)
    return matches[0].kombo if matches else None
