"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

from typing import NamedTuple

from nomina.core.config import AppSettings
from nomina.persistence.dynamodb_backend import (
    DynamoDBConceptStore,
    DynamoDBInputSource,
    DynamoDBPayrollStore,
    DynamoDBPeriodStore,
)
from nomina.persistence.redis_backend import RedisCacheBackend


class Persistence(NamedTuple):
    concepts: DynamoDBConceptStore
    periods: DynamoDBPeriodStore
    payrolls: DynamoDBPayrollStore
    inputs: DynamoDBInputSource
    cache: RedisCacheBackend


def create_persistence(settings: AppSettings | None = None) -> Persistence:
    """Create wired-up persistence backends from application settings."""
    if settings is None:
        settings = AppSettings()

    cache = RedisCacheBackend(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
        decode_responses=settings.redis.decode_responses,
    )

    table_kwargs = {
        "table_suffix": settings.dynamodb.table_suffix,
        "region": settings.dynamodb.region,
        "endpoint_url": settings.dynamodb.endpoint_url,
    }

    return Persistence(
        concepts=DynamoDBConceptStore(**table_kwargs, cache=cache, cache_ttl=settings.redis.concept_cache_ttl),
        periods=DynamoDBPeriodStore(**table_kwargs),
        payrolls=DynamoDBPayrollStore(**table_kwargs),
        inputs=DynamoDBInputSource(**table_kwargs),
        cache=cache,
    )
