"""Create the Nomina DynamoDB tables and load the default concept catalog.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import boto3

from nomina.models.concept import PayrollConcept
from nomina.persistence.dynamodb_backend import CONCEPTS_TABLE, TABLES

CATALOG_PATH = Path(__file__).resolve().parent.parent / "config" / "concept_catalog.json"


def create_tables(ddb: Any, suffix: str = "") -> None:
    """Create every Nomina table. Skips if table already exists."""
    client = ddb.meta.client
    existing = client.list_tables().get("TableNames", [])

    for base in TABLES:
        table_name = f"{base}{suffix}"
        if table_name in existing:
            print(f"  Table {table_name} already exists, skipping")
            continue
        client.create_table(
            TableName=table_name,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        print(f"  Created table {table_name}")


def load_catalog(path: Path = CATALOG_PATH) -> list[PayrollConcept]:
    """Parse and validate concept_catalog.json."""
    data = json.loads(path.read_text(encoding="utf-8"))
    return [PayrollConcept.model_validate(c) for c in data["concepts"]]


def seed_concepts(ddb: Any, suffix: str = "", path: Path = CATALOG_PATH) -> int:
    """Write the catalog in the layout DynamoDBConceptStore reads."""
    concepts = load_catalog(path)
    tbl = ddb.Table(f"{CONCEPTS_TABLE}{suffix}")
    with tbl.batch_writer() as batch:
        for concept in concepts:
            batch.put_item(Item={
                "PK": "CATALOG",
                "SK": f"CONCEPT#{concept.code}",
                **concept.model_dump(mode="json"),
            })
    print(f"  Seeded {len(concepts)} payroll concepts")
    return len(concepts)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed DynamoDB tables for Nomina")
    parser.add_argument("--endpoint-url", default=None, help="DynamoDB endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)

    print("Creating tables...")
    create_tables(ddb, suffix=args.table_suffix)

    print("Seeding concept catalog...")
    seed_concepts(ddb, suffix=args.table_suffix)

    print("Done!")


if __name__ == "__main__":
    main()
