"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class TaxBracketSetting(BaseModel):
    """One marginal bracket: income above ``lower`` is taxed at ``rate``."""

    lower: Decimal
    rate: Decimal


def _default_brackets() -> list[TaxBracketSetting]:
    # Annualized bands carried over from the payroll service's withholding table.
    return [
        TaxBracketSetting(lower=Decimal("0"), rate=Decimal("0")),
        TaxBracketSetting(lower=Decimal("1340000"), rate=Decimal("0.19")),
        TaxBracketSetting(lower=Decimal("3496000"), rate=Decimal("0.28")),
        TaxBracketSetting(lower=Decimal("5738000"), rate=Decimal("0.33")),
    ]


class PayrollConfig(BaseSettings):
    """Period run configuration."""

    model_config = {"env_prefix": "NOMINA_PAYROLL_"}

    max_workers: int = 4
    employee_timeout_seconds: float = 30.0
    max_retries: int = 3
    paid_leave: bool = True
    paid_holidays: bool = True
    currency_places: int = 2


class IncomeTaxConfig(BaseSettings):
    """Progressive bracket table behind calculateIncomeTax()."""

    model_config = {"env_prefix": "NOMINA_TAX_"}

    exempt_amount: Decimal = Decimal("2392000")
    annualization_factor: Decimal = Decimal("12")
    brackets: list[TaxBracketSetting] = _default_brackets()


class DynamoDBConfig(BaseSettings):
    """DynamoDB configuration."""

    model_config = {"env_prefix": "NOMINA_DYNAMO_"}

    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis cache configuration."""

    model_config = {"env_prefix": "NOMINA_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    decode_responses: bool = True
    concept_cache_ttl: int = 300


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "NOMINA_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"

    payroll: PayrollConfig = PayrollConfig()
    income_tax: IncomeTaxConfig = IncomeTaxConfig()
    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
