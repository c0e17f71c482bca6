"""
Premium services: free by plan tier (across every product) or by Kombo.
"""
import itertools

import pytest

from conftest import find
from quote_engine.engine.models import Selection
from quote_engine.engine.premium import is_dedicated_cs_included, is_vip_included

PLANS = ("prime", "k", "k2")
ADD_ONS = ("inteligencia", "leads", "assinaturas")


def select(plans, add_ons=()):
    return Selection(products=frozenset(plans), plans=plans, add_ons=frozenset(add_ons))


@pytest.mark.parametrize("plan,vip,cs", [
    ("prime", False, False),
    ("k", True, False),
    ("k2", True, True),
])
def test_plan_tier_inclusions(config, plan, vip, cs):
    for line_id in ("imob", "loc"):
        selection = select({line_id: plan})
        assert is_vip_included(selection, config) is vip
        assert is_dedicated_cs_included(selection, config) is cs


def test_kombo_grants_both_services_to_prime_plans(config):
    selection = select({"imob": "prime", "loc": "prime"})
    assert is_vip_included(selection, config)
    assert is_dedicated_cs_included(selection, config)

    assert not is_vip_included(select({"imob": "prime"}), config)
    assert not is_vip_included(select({"loc": "prime"}), config)


def test_plan_benefit_carries_across_products(make_config):
    def edit(doc):
        find(doc["kombos"], "kombo_id", "core-gestao").update(grants_vip=False, grants_dedicated_cs=False)

    config = make_config(edit)
    selection = select({"imob": "k", "loc": "prime"})
    assert is_vip_included(selection, config)
    assert not is_dedicated_cs_included(selection, config)


def test_services_are_independent(make_config):
    def edit(doc):
        find(doc["kombos"], "kombo_id", "imob-start").update(grants_vip=True, grants_dedicated_cs=False)

    config = make_config(edit)
    selection = select({"imob": "prime"}, {"leads", "assinaturas"})
    assert is_vip_included(selection, config)
    assert not is_dedicated_cs_included(selection, config)


def _all_selections(config):
    lines = [line.line_id for line in config.product_lines]
    for count in (1, 2):
        for products in itertools.combinations(lines, count):
            for plan_ids in itertools.product(PLANS, repeat=count):
                for n in range(len(ADD_ONS) + 1):
                    for add_ons in itertools.combinations(ADD_ONS, n):
                        yield select(dict(zip(products, plan_ids)), add_ons)


def _upgrades(selection):
    for line_id, plan_id in selection.plans.items():
        rank = PLANS.index(plan_id)
        for better in PLANS[rank + 1:]:
            yield selection.with_changes(plans={**selection.plans, line_id: better})
    for add_on in ADD_ONS:
        if add_on not in selection.add_ons:
            yield selection.with_changes(add_ons=selection.add_ons | {add_on})


@pytest.mark.parametrize("predicate", [is_vip_included, is_dedicated_cs_included])
def test_inclusion_is_monotonic(config, predicate):
    for selection in _all_selections(config):
        if not predicate(selection, config):
            continue
        for upgraded in _upgrades(selection):
            assert predicate(upgraded, config), (selection, upgraded)
