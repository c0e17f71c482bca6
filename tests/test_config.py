"""
Pricing document loading, integrity checks and the versioned provider.
"""
import json
import logging
import os
from decimal import Decimal

import pydantic
import pytest

from conftest import _DOCUMENT, find
from quote_engine.config.provider import PricingConfigProvider
from quote_engine.config.schema import PaymentFrequency, load_pricing_config
from quote_engine.config.settings import PACKAGE_DIR, Settings
from quote_engine.errors import ConfigurationError


def test_packaged_config_loads(config):
    assert config.version == "2026.02-h2"
    assert config.line_ids == {"imob", "loc"}
    assert config.addon_ids == {"inteligencia", "leads", "assinaturas", "pay"}
    assert set(config.frequencies) == set(PaymentFrequency)
    assert config.rounding.target_digit == 7
    assert config.product_line("imob").entry_plan.plan_id == "prime"
    assert config.premium_service("vip_support").name == "Suporte VIP"
    assert {m.meter_id for m in config.usage_meters} == {"boletos", "splits"}


def test_snapshots_are_frozen(config):
    with pytest.raises(pydantic.ValidationError):
        config.version = "other"
    with pytest.raises(pydantic.ValidationError):
        config.product_line("imob").plans[0].base_price = 1


def test_config_mappings_are_read_only(config):
    annual = config.frequencies[PaymentFrequency.ANNUAL]
    with pytest.raises(TypeError):
        config.frequencies[PaymentFrequency.ANNUAL] = config.frequencies[PaymentFrequency.MONTHLY]
    with pytest.raises(TypeError):
        del config.frequencies[PaymentFrequency.MONTHLY]
    with pytest.raises(TypeError):
        config.usage_meter("boletos").plan_steps["k"] = ()

    assert config.frequencies[PaymentFrequency.ANNUAL] is annual
    assert len(config.frequencies) == len(PaymentFrequency)


@pytest.mark.parametrize("frequency,months", [
    (PaymentFrequency.MONTHLY, 0),
    (PaymentFrequency.SEMESTRAL, 0),
    (PaymentFrequency.ANNUAL, 12),
    (PaymentFrequency.BIENNIAL, 24),
])
def test_prepaid_offered_on_annual_and_biennial_only(config, frequency, months):
    terms = config.frequency_terms(frequency)
    assert terms.prepaid_months == months
    if months:
        assert terms.prepaid_discount_rate == Decimal("0.10")


def _imob_plan(doc, plan_id):
    return find(find(doc["product_lines"], "line_id", "imob")["plans"], "plan_id", plan_id)


def _meter(doc, meter_id):
    return find(doc["usage_meters"], "meter_id", meter_id)


@pytest.mark.parametrize("edit,message", [
    (lambda doc: doc["product_lines"].append(doc["product_lines"][0]), "duplicate product line"),
    (lambda doc: _imob_plan(doc, "k")["unit_steps"].pop(0), "gap"),
    (lambda doc: _imob_plan(doc, "k2").update(vip_included=False), "drops vip"),
    (lambda doc: doc["add_ons"][0]["eligibility"].append("crm"), "unknown product lines"),
    (lambda doc: doc["add_ons"].append(doc["add_ons"][0]), "duplicate add-on"),
    (lambda doc: doc["kombos"][0]["required_add_ons"].append("whatsapp"), "unknown add-ons"),
    (lambda doc: doc["kombos"][0]["required_products"].append("crm"), "unknown products"),
    (lambda doc: doc["kombos"][0]["waived_implementations"].append("crm"), "waives unknown"),
    (lambda doc: doc["kombos"].append(doc["kombos"][0]), "duplicate kombo"),
    (lambda doc: _meter(doc, "boletos")["plan_steps"].pop("k2"), "no step table for plan 'k2'"),
    (lambda doc: _meter(doc, "boletos").update(requires_add_on="whatsapp"), "requires unknown add-on"),
    (lambda doc: _meter(doc, "splits").update(line_id="crm"), "meters unknown product line"),
    (lambda doc: doc["usage_meters"].append(doc["usage_meters"][0]), "duplicate usage meter"),
    (lambda doc: _meter(doc, "boletos")["plan_steps"]["k"][0].update(from_unit=2), "gap"),
])
def test_integrity_errors(make_config, edit, message):
    with pytest.raises(ConfigurationError, match=message):
        make_config(edit)


def test_dropping_cs_on_upgrade_is_rejected(make_config):
    # K2 is the only plan with dedicated CS, so dropping it there is fine
    config = make_config(lambda doc: _imob_plan(doc, "k2").update(dedicated_cs_included=False))
    assert not config.product_line("imob").plan("k2").dedicated_cs_included

    def edit(doc):
        _imob_plan(doc, "k").update(dedicated_cs_included=True)
        _imob_plan(doc, "k2").update(dedicated_cs_included=False)

    with pytest.raises(ConfigurationError, match="drops dedicated CS"):
        make_config(edit)


@pytest.mark.parametrize("edit,path", [
    (lambda doc: doc.pop("version"), "version"),
    (lambda doc: doc["rounding"].update(target_digit=12), "rounding.target_digit"),
    (lambda doc: doc["frequencies"]["annual"].update(discount_rate="1.5"), "frequencies.annual.discount_rate"),
    (lambda doc: doc["frequencies"]["annual"].update(allowed_installments=[3, 1]), "frequencies.annual"),
    (lambda doc: doc["add_ons"][1].update(unit_steps=[]), "add_ons.1"),
])
def test_schema_errors_become_configuration_errors(make_config, edit, path):
    with pytest.raises(ConfigurationError) as exc_info:
        make_config(edit)
    assert exc_info.value.path == path
    assert isinstance(exc_info.value.__cause__, pydantic.ValidationError)


def test_missing_and_malformed_files(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_pricing_config(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="invalid JSON"):
        load_pricing_config(broken)


def test_settings_from_environment(monkeypatch, tmp_path):
    monkeypatch.delenv("QUOTE_ENGINE_PRICING_CONFIG", raising=False)
    monkeypatch.delenv("QUOTE_ENGINE_LOG_LEVEL", raising=False)
    defaults = Settings.load(project_root=tmp_path)
    assert defaults.pricing_config_path == PACKAGE_DIR / "data" / "pricing_config.json"
    assert defaults.log_level == "INFO"

    monkeypatch.setenv("QUOTE_ENGINE_PRICING_CONFIG", str(tmp_path / "pricing.json"))
    monkeypatch.setenv("QUOTE_ENGINE_LOG_LEVEL", "debug")
    settings = Settings.load(project_root=tmp_path)
    assert settings.pricing_config_path == tmp_path / "pricing.json"
    assert settings.log_level == "DEBUG"


def _write(path, version, **changes):
    document = json.loads(json.dumps(_DOCUMENT))
    document["version"] = version
    document.update(changes)
    path.write_text(json.dumps(document), encoding="utf-8")
    # Distinct mtime even on coarse filesystem clocks
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))


def test_provider_loads_and_caches(tmp_path, caplog):
    path = tmp_path / "pricing.json"
    _write(path, "v1")
    provider = PricingConfigProvider(path)

    with caplog.at_level(logging.INFO, logger="quote_engine.config.provider"):
        first = provider.get()
        second = provider.get()

    assert first is second
    assert first.version == "v1"
    assert provider.current_version() == "v1"
    assert not provider.is_stale("v1")
    assert [r.getMessage() for r in caplog.records] == [f"Loaded pricing config v1 from {path}"]


def test_provider_picks_up_new_version(tmp_path, caplog):
    path = tmp_path / "pricing.json"
    _write(path, "v1")
    provider = PricingConfigProvider(path)
    old = provider.get()

    _write(path, "v2", currency="USD")
    assert provider.is_stale("v1")
    assert provider.current_version() == "v2"

    with caplog.at_level(logging.INFO, logger="quote_engine.config.provider"):
        new = provider.get()

    assert new.version == "v2"
    assert new.currency == "USD"
    # The old snapshot is untouched
    assert old.version == "v1"
    assert "Pricing config changed: v1 -> v2" in caplog.text


def test_provider_invalidate_rereads(tmp_path):
    path = tmp_path / "pricing.json"
    _write(path, "v1")
    provider = PricingConfigProvider(path)
    first = provider.get()

    provider.invalidate()
    second = provider.get()
    assert second is not first
    assert second == first


def test_provider_errors(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        PricingConfigProvider(tmp_path / "missing.json").get()

    path = tmp_path / "pricing.json"
    path.write_text(json.dumps({"product_lines": []}), encoding="utf-8")
    with pytest.raises(ConfigurationError, match="no version"):
        PricingConfigProvider(path).current_version()
