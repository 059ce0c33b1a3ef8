"""DynamoDB backends for concepts, periods, payrolls and HR inputs.

Every table uses the PK/SK key schema. Items are the JSON-mode dump of the
pydantic model (money as decimal strings) plus the key attributes, so that
values round-trip without float conversion.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel

from nomina.core.exceptions import (
    NominaError,
    PeriodStateError,
    PersistenceConflict,
    RecordNotFoundError,
)
from nomina.models.concept import PayrollConcept
from nomina.models.inputs import (
    AttendanceRecord,
    Employee,
    EmployeeBenefit,
    EmployeeStatus,
    LeaveRequest,
)
from nomina.models.payroll import Payroll, PayrollDetail, PayrollStatus
from nomina.models.period import PayrollPeriod, PeriodStatus

CONCEPTS_TABLE = "nomina-payroll-concepts"
PERIODS_TABLE = "nomina-payroll-periods"
PAYROLLS_TABLE = "nomina-payrolls"
DETAILS_TABLE = "nomina-payroll-details"
HR_INPUTS_TABLE = "nomina-hr-inputs"

TABLES = (CONCEPTS_TABLE, PERIODS_TABLE, PAYROLLS_TABLE, DETAILS_TABLE, HR_INPUTS_TABLE)

# TransactWriteItems accepts at most this many items per call
TRANSACTION_LIMIT = 100

_KEY_ATTRS = ("PK", "SK")


def _to_item(model: BaseModel, pk: str, sk: str) -> dict[str, Any]:
    return {"PK": pk, "SK": sk, **model.model_dump(mode="json")}


def _from_item(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if k not in _KEY_ATTRS}


def _period_key(period_id: str) -> dict[str, str]:
    return {"PK": f"PERIOD#{period_id}", "SK": "PERIOD"}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class _DynamoTables:
    """Shared boto3 resource and table naming."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._table_suffix = table_suffix
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._ddb = boto3.resource("dynamodb", **kwargs)

    def _name(self, base: str) -> str:
        return f"{base}{self._table_suffix}"

    def _table(self, base: str):
        return self._ddb.Table(self._name(base))

    def _query_pk(self, table_base: str, pk: str, sk_prefix: str | None = None,
                  sk_range: tuple[str, str] | None = None) -> list[dict[str, Any]]:
        """Query all items with a given partition key, following pagination.

        ``sk_range`` restricts the sort key to an inclusive (low, high) pair.
        """
        tbl = self._table(table_base)
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": "PK = :pk",
            "ExpressionAttributeValues": {":pk": pk},
        }
        if sk_prefix:
            kwargs["KeyConditionExpression"] += " AND begins_with(SK, :sk)"
            kwargs["ExpressionAttributeValues"][":sk"] = sk_prefix
        elif sk_range:
            kwargs["KeyConditionExpression"] += " AND SK BETWEEN :low AND :high"
            low, high = sk_range
            kwargs["ExpressionAttributeValues"].update({":low": low, ":high": high})
        items: list[dict[str, Any]] = []
        try:
            while True:
                resp = tbl.query(**kwargs)
                items.extend(resp.get("Items", []))
                if "LastEvaluatedKey" not in resp:
                    return items
                kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
        except ClientError as exc:
            raise NominaError(f"DynamoDB query on {table_base} failed: {exc}") from exc

    def _get_item(self, table_base: str, pk: str, sk: str) -> dict[str, Any] | None:
        """Get a single item by PK + SK. Returns None if not found."""
        try:
            resp = self._table(table_base).get_item(Key={"PK": pk, "SK": sk}, ConsistentRead=True)
        except ClientError as exc:
            raise NominaError(f"DynamoDB get on {table_base} failed: {exc}") from exc
        return resp.get("Item")

    def _load_period(self, period_id: str) -> PayrollPeriod:
        key = _period_key(period_id)
        item = self._get_item(PERIODS_TABLE, key["PK"], key["SK"])
        if item is None:
            raise RecordNotFoundError(f"Payroll period {period_id!r} not found")
        return PayrollPeriod.model_validate(_from_item(item))


# ---------------------------------------------------------------------------
# Concept catalog
# ---------------------------------------------------------------------------

class DynamoDBConceptStore(_DynamoTables):
    """Production IConceptStore backed by DynamoDB + optional Redis cache."""

    CACHE_KEY = "concepts:catalog"

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None, cache: Any = None, cache_ttl: int = 300) -> None:
        super().__init__(table_suffix, region, endpoint_url)
        self._cache = cache
        self._cache_ttl = cache_ttl

    def list_concepts(self) -> list[PayrollConcept]:
        if self._cache is not None:
            cached = self._cache.get(self.CACHE_KEY)
            if cached is not None:
                return [PayrollConcept.model_validate(c) for c in json.loads(cached)]

        items = self._query_pk(CONCEPTS_TABLE, "CATALOG", "CONCEPT#")
        concepts = [PayrollConcept.model_validate(_from_item(i)) for i in items]

        if self._cache is not None:
            payload = json.dumps([c.model_dump(mode="json") for c in concepts])
            self._cache.setex(self.CACHE_KEY, self._cache_ttl, payload)
        return concepts

    def put_concept(self, concept: PayrollConcept) -> None:
        try:
            self._table(CONCEPTS_TABLE).put_item(Item=_to_item(concept, "CATALOG", f"CONCEPT#{concept.code}"))
        except ClientError as exc:
            raise NominaError(f"Could not store concept {concept.code}: {exc}") from exc
        if self._cache is not None:
            self._cache.delete(self.CACHE_KEY)


# ---------------------------------------------------------------------------
# Periods
# ---------------------------------------------------------------------------

class DynamoDBPeriodStore(_DynamoTables):
    """Production IPeriodStore; transitions are conditional puts on (status, revision)."""

    def get_period(self, period_id: str) -> PayrollPeriod:
        return self._load_period(period_id)

    def create_period(self, period: PayrollPeriod) -> PayrollPeriod:
        key = _period_key(period.id)
        try:
            self._table(PERIODS_TABLE).put_item(
                Item=_to_item(period, key["PK"], key["SK"]),
                ConditionExpression="attribute_not_exists(PK)",
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise PersistenceConflict(f"Payroll period {period.id!r} already exists") from exc
            raise NominaError(f"Could not create period {period.id}: {exc}") from exc
        return period

    def transition(
        self,
        period_id: str,
        expected_status: PeriodStatus,
        expected_revision: int,
        changes: dict[str, Any],
    ) -> PayrollPeriod:
        current = self.get_period(period_id)
        updated = PayrollPeriod.model_validate(
            {**current.model_dump(), **changes, "revision": expected_revision + 1}
        )
        key = _period_key(period_id)
        try:
            self._table(PERIODS_TABLE).put_item(
                Item=_to_item(updated, key["PK"], key["SK"]),
                ConditionExpression="#s = :status AND revision = :rev",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={":status": expected_status.value, ":rev": expected_revision},
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise PeriodStateError(
                    f"Period {period_id} is no longer {expected_status} at revision {expected_revision}"
                ) from exc
            raise NominaError(f"Could not update period {period_id}: {exc}") from exc
        return updated


# ---------------------------------------------------------------------------
# Payrolls and details
# ---------------------------------------------------------------------------

class DynamoDBPayrollStore(_DynamoTables):
    """Production IPayrollStore.

    replace_payroll runs as one TransactWriteItems call: a guarded revision
    bump on the owning period, the conditional payroll put, and the detail
    deletes and puts. Either all of it lands or none of it does.
    """

    def _payroll_key(self, period_id: str, employee_id: str) -> dict[str, str]:
        return {"PK": f"PERIOD#{period_id}", "SK": f"EMPLOYEE#{employee_id}"}

    def _period_bump(self, period_id: str) -> dict[str, Any]:
        # payroll writes need a recomputable period and advance its revision
        return {"Update": {
            "TableName": self._name(PERIODS_TABLE),
            "Key": _period_key(period_id),
            "UpdateExpression": "SET revision = revision + :one",
            "ConditionExpression": "#s IN (:draft, :processing)",
            "ExpressionAttributeNames": {"#s": "status"},
            "ExpressionAttributeValues": {
                ":one": 1,
                ":draft": PeriodStatus.DRAFT.value,
                ":processing": PeriodStatus.PROCESSING.value,
            },
        }}

    def get_payroll(self, period_id: str, employee_id: str) -> Optional[Payroll]:
        key = self._payroll_key(period_id, employee_id)
        item = self._get_item(PAYROLLS_TABLE, key["PK"], key["SK"])
        return Payroll.model_validate(_from_item(item)) if item else None

    def list_payrolls(self, period_id: str) -> list[Payroll]:
        items = self._query_pk(PAYROLLS_TABLE, f"PERIOD#{period_id}", "EMPLOYEE#")
        return sorted((Payroll.model_validate(_from_item(i)) for i in items), key=lambda p: p.employee_id)

    def list_details(self, payroll_id: str) -> list[PayrollDetail]:
        items = self._query_pk(DETAILS_TABLE, f"PAYROLL#{payroll_id}", "CONCEPT#")
        details = [PayrollDetail.model_validate(_from_item(i)) for i in items]
        return sorted(details, key=lambda d: (d.display_order, d.concept_code))

    def replace_payroll(
        self,
        payroll: Payroll,
        details: list[PayrollDetail],
        expected_revision: Optional[int],
    ) -> Payroll:
        saved = payroll.model_copy(update={"revision": (expected_revision or 0) + 1})
        key = self._payroll_key(payroll.payroll_period_id, payroll.employee_id)

        if expected_revision is None:
            payroll_condition: dict[str, Any] = {"ConditionExpression": "attribute_not_exists(PK)"}
        else:
            payroll_condition = {
                "ConditionExpression": "revision = :rev AND NOT #s IN (:approved, :paid)",
                "ExpressionAttributeNames": {"#s": "status"},
                "ExpressionAttributeValues": {
                    ":rev": expected_revision,
                    ":approved": PayrollStatus.APPROVED.value,
                    ":paid": PayrollStatus.PAID.value,
                },
            }

        new_codes = {d.concept_code for d in details}
        stale = [d for d in self.list_details(payroll.id) if d.concept_code not in new_codes]
        detail_pk = f"PAYROLL#{payroll.id}"

        items: list[dict[str, Any]] = [
            self._period_bump(payroll.payroll_period_id),
            {"Put": {
                "TableName": self._name(PAYROLLS_TABLE),
                "Item": _to_item(saved, key["PK"], key["SK"]),
                **payroll_condition,
            }},
        ]
        items += [
            {"Delete": {"TableName": self._name(DETAILS_TABLE),
                        "Key": {"PK": detail_pk, "SK": f"CONCEPT#{d.concept_code}"}}}
            for d in stale
        ]
        items += [
            {"Put": {"TableName": self._name(DETAILS_TABLE),
                     "Item": _to_item(d, detail_pk, f"CONCEPT#{d.concept_code}")}}
            for d in details
        ]

        try:
            self._ddb.meta.client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if _error_code(exc) != "TransactionCanceledException":
                raise NominaError(f"Could not write payroll {payroll.id}: {exc}") from exc
            period = self._load_period(payroll.payroll_period_id)
            if not period.status.allows_recompute:
                raise PeriodStateError(f"Period {period.id} is {period.status}; payrolls are immutable") from exc
            current = self.get_payroll(payroll.payroll_period_id, payroll.employee_id)
            if current is not None and current.status.is_locked:
                raise PeriodStateError(f"Payroll {payroll.id} is {current.status}") from exc
            raise PersistenceConflict(
                f"Payroll {payroll.id} changed concurrently (expected revision {expected_revision})"
            ) from exc
        return saved

    def set_payroll_status(
        self,
        period_id: str,
        employee_id: str,
        expected: frozenset[PayrollStatus],
        changes: dict[str, Any],
    ) -> Payroll:
        current = self.get_payroll(period_id, employee_id)
        if current is None:
            raise RecordNotFoundError(f"No payroll for employee {employee_id} in period {period_id}")
        if current.status not in expected:
            raise PeriodStateError(f"Payroll {current.id} is {current.status}")
        updated = Payroll.model_validate({**current.model_dump(), **changes, "revision": current.revision + 1})
        key = self._payroll_key(period_id, employee_id)
        items = [
            self._period_bump(period_id),
            {"Put": {
                "TableName": self._name(PAYROLLS_TABLE),
                "Item": _to_item(updated, key["PK"], key["SK"]),
                "ConditionExpression": "revision = :rev",
                "ExpressionAttributeValues": {":rev": current.revision},
            }},
        ]
        try:
            self._ddb.meta.client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if _error_code(exc) != "TransactionCanceledException":
                raise NominaError(f"Could not update payroll {current.id}: {exc}") from exc
            period = self._load_period(period_id)
            if not period.status.allows_recompute:
                raise PeriodStateError(f"Period {period_id} is {period.status}; payrolls are immutable") from exc
            raise PersistenceConflict(f"Payroll {current.id} changed concurrently") from exc
        return updated

    def settle_period(
        self,
        period_id: str,
        expected_status: PeriodStatus,
        expected_revision: int,
        changes: dict[str, Any],
        from_status: PayrollStatus,
        payroll_changes: dict[str, Any],
    ) -> PayrollPeriod:
        """Move the period and its ``from_status`` rows in TransactWriteItems batches.

        Every batch is conditioned on the period still being at
        (expected_status, expected_revision); the period put rides in the last
        batch. Rows moved by an earlier, interrupted call no longer match
        ``from_status`` and are skipped on the next one.
        """
        current = self._load_period(period_id)
        if current.status is not expected_status or current.revision != expected_revision:
            raise PeriodStateError(
                f"Period {period_id} is {current.status} at revision {current.revision}, "
                f"expected {expected_status} at revision {expected_revision}"
            )
        updated = PayrollPeriod.model_validate(
            {**current.model_dump(), **changes, "revision": expected_revision + 1}
        )
        period_condition = {
            "ConditionExpression": "#s = :status AND revision = :rev",
            "ExpressionAttributeNames": {"#s": "status"},
            "ExpressionAttributeValues": {":status": expected_status.value, ":rev": expected_revision},
        }

        row_puts: list[dict[str, Any]] = []
        for payroll in self.list_payrolls(period_id):
            if payroll.status is not from_status:
                continue
            moved = Payroll.model_validate(
                {**payroll.model_dump(), **payroll_changes, "revision": payroll.revision + 1}
            )
            key = self._payroll_key(period_id, payroll.employee_id)
            row_puts.append({"Put": {
                "TableName": self._name(PAYROLLS_TABLE),
                "Item": _to_item(moved, key["PK"], key["SK"]),
                "ConditionExpression": "revision = :rev",
                "ExpressionAttributeValues": {":rev": payroll.revision},
            }})

        size = TRANSACTION_LIMIT - 1
        batches = [row_puts[i:i + size] for i in range(0, len(row_puts), size)] or [[]]
        period_key = _period_key(period_id)
        for index, batch in enumerate(batches):
            if index == len(batches) - 1:
                guard = {"Put": {"TableName": self._name(PERIODS_TABLE),
                                 "Item": _to_item(updated, period_key["PK"], period_key["SK"]),
                                 **period_condition}}
            else:
                guard = {"ConditionCheck": {"TableName": self._name(PERIODS_TABLE),
                                            "Key": period_key, **period_condition}}
            try:
                self._ddb.meta.client.transact_write_items(TransactItems=[guard, *batch])
            except ClientError as exc:
                if _error_code(exc) != "TransactionCanceledException":
                    raise NominaError(f"Could not settle period {period_id}: {exc}") from exc
                latest = self._load_period(period_id)
                if latest.status is not expected_status or latest.revision != expected_revision:
                    raise PeriodStateError(
                        f"Period {period_id} is no longer {expected_status} at revision {expected_revision}"
                    ) from exc
                raise PersistenceConflict(f"Payrolls of period {period_id} changed concurrently") from exc
        return updated


# ---------------------------------------------------------------------------
# HR inputs
# ---------------------------------------------------------------------------

class DynamoDBInputSource(_DynamoTables):
    """IInputSource over the single HR inputs table.

    PK ``EMPLOYEE#<id>`` holds the ``PROFILE`` item plus ``ATTENDANCE#<date>``,
    ``BENEFIT#<id>`` and ``LEAVE#<id>`` items. The roster lives under the
    ``ROSTER`` partition as one ``EMPLOYEE#<id>`` item per employee.
    """

    def put_employee(self, employee: Employee) -> None:
        tbl = self._table(HR_INPUTS_TABLE)
        tbl.put_item(Item=_to_item(employee, "ROSTER", f"EMPLOYEE#{employee.id}"))

    def put_attendance(self, record: AttendanceRecord) -> None:
        self._table(HR_INPUTS_TABLE).put_item(
            Item=_to_item(record, f"EMPLOYEE#{record.employee_id}", f"ATTENDANCE#{record.date.isoformat()}")
        )

    def put_benefit(self, benefit: EmployeeBenefit) -> None:
        self._table(HR_INPUTS_TABLE).put_item(
            Item=_to_item(benefit, f"EMPLOYEE#{benefit.employee_id}", f"BENEFIT#{benefit.id}")
        )

    def put_leave(self, leave: LeaveRequest) -> None:
        self._table(HR_INPUTS_TABLE).put_item(
            Item=_to_item(leave, f"EMPLOYEE#{leave.employee_id}", f"LEAVE#{leave.id}")
        )

    def active_employees(self, period: PayrollPeriod) -> list[Employee]:
        employees = [Employee.model_validate(_from_item(i)) for i in self._query_pk(HR_INPUTS_TABLE, "ROSTER")]
        return sorted(
            (
                e for e in employees
                if e.status is EmployeeStatus.ACTIVE
                and (e.hire_date is None or e.hire_date <= period.end_date)
                and (e.termination_date is None or e.termination_date >= period.start_date)
            ),
            key=lambda e: e.id,
        )

    def attendance(self, employee_id: str, start: date, end: date) -> list[AttendanceRecord]:
        items = self._query_pk(
            HR_INPUTS_TABLE,
            f"EMPLOYEE#{employee_id}",
            sk_range=(f"ATTENDANCE#{start.isoformat()}", f"ATTENDANCE#{end.isoformat()}"),
        )
        return [AttendanceRecord.model_validate(_from_item(i)) for i in items]

    def benefits(self, employee_id: str) -> list[EmployeeBenefit]:
        items = self._query_pk(HR_INPUTS_TABLE, f"EMPLOYEE#{employee_id}", "BENEFIT#")
        return [EmployeeBenefit.model_validate(_from_item(i)) for i in items]

    def leaves(self, employee_id: str, start: date, end: date) -> list[LeaveRequest]:
        items = self._query_pk(HR_INPUTS_TABLE, f"EMPLOYEE#{employee_id}", "LEAVE#")
        leaves = [LeaveRequest.model_validate(_from_item(i)) for i in items]
        return [lv for lv in leaves if lv.start_date <= end and lv.end_date >= start]
