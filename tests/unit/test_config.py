"""Tests for configuration defaults and env overrides."""

from __future__ import annotations

from decimal import Decimal

from nomina.core.config import AppSettings, DynamoDBConfig, IncomeTaxConfig, PayrollConfig


def test_default_settings():
    settings = AppSettings()
    assert settings.environment == "dev"
    assert settings.payroll.currency_places == 2
    assert settings.redis.concept_cache_ttl == 300


def test_payroll_config_defaults():
    config = PayrollConfig()
    assert config.max_workers == 4
    assert config.max_retries == 3
    assert config.paid_leave is True


def test_income_tax_defaults():
    config = IncomeTaxConfig()
    assert config.exempt_amount == Decimal("2392000")
    assert [b.rate for b in config.brackets] == [Decimal("0"), Decimal("0.19"), Decimal("0.28"), Decimal("0.33")]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("NOMINA_PAYROLL_MAX_WORKERS", "16")
    monkeypatch.setenv("NOMINA_DYNAMO_TABLE_SUFFIX", "-uat")
    monkeypatch.setenv("NOMINA_TAX_EXEMPT_AMOUNT", "1000000")
    assert PayrollConfig().max_workers == 16
    assert DynamoDBConfig().table_suffix == "-uat"
    assert IncomeTaxConfig().exempt_amount == Decimal("1000000")
