"""Tests for create_persistence wiring."""

from __future__ import annotations

from unittest.mock import patch

import fakeredis
from moto import mock_aws

from nomina.core.config import AppSettings, DynamoDBConfig, RedisConfig
from nomina.persistence import create_persistence
from nomina.persistence.dynamodb_backend import DynamoDBConceptStore


def test_wires_backends_from_settings():
    settings = AppSettings(
        dynamodb=DynamoDBConfig(table_suffix="-dev", region="eu-west-1"),
        redis=RedisConfig(concept_cache_ttl=60),
    )
    with mock_aws(), patch("redis.Redis", return_value=fakeredis.FakeRedis(decode_responses=True)):
        backends = create_persistence(settings)
        assert isinstance(backends.concepts, DynamoDBConceptStore)
        assert backends.periods._name("nomina-payroll-periods") == "nomina-payroll-periods-dev"
        assert backends.concepts._cache is backends.cache
        assert backends.cache.ping() is True
