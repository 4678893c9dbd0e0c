"""Medication order repository."""

from datetime import datetime

from visitas_core.common.rows import ColumnMap
from visitas_core.common.versioning import INITIAL_VERSION, VERSIONED_COLUMNS, VersionedRepository
from visitas_core.orders.schemas import (
    MedicationOrder,
    MedicationOrderCreate,
    MedicationOrderFilter,
    MedicationOrderPatch,
)

ORDER_COLUMNS = ColumnMap(
    MedicationOrder,
    (
        "order_id", "patient_id", "status", "intent",
        "medication", "dosage_instruction",
        "prescribed_date", "prescribed_by",
        "dispense_pharmacy", "reason_reference",
        *VERSIONED_COLUMNS,
    ),
    fields={"patient_id": "subject_id"},
    json_columns=("medication", "dosage_instruction", "dispense_pharmacy"),
)


class MedicationOrderRepository(VersionedRepository[MedicationOrder, MedicationOrderPatch]):
    table = "medication_orders"
    id_column = "order_id"
    columns = ORDER_COLUMNS

    async def create(
        self, subject_id: str, request: MedicationOrderCreate, created_by: str,
    ) -> MedicationOrder:
        now = self.clock()
        order = MedicationOrder(
            order_id=self.id_factory(),
            subject_id=subject_id,
            **request.model_dump(),
            version=INITIAL_VERSION,
            created_at=now,
            created_by=created_by,
            updated_at=now,
        )
        return await self._insert(order)

    async def get(self, subject_id: str, order_id: str) -> MedicationOrder:
        return await self._fetch_live(order_id, subject_id)

    async def list_orders(self, filters: MedicationOrderFilter) -> list[MedicationOrder]:
        conditions = []
        params = {}
        equality = {
            "patient_id": filters.subject_id,
            "status": filters.status,
            "intent": filters.intent,
            "prescribed_by": filters.prescribed_by,
            "reason_reference": filters.reason_reference,
        }
        for column, value in equality.items():
            if value is not None:
                conditions.append(f"{column} = @{column}")
                params[column] = value
        if filters.prescribed_date_from is not None:
            conditions.append("prescribed_date >= @prescribed_date_from")
            params["prescribed_date_from"] = filters.prescribed_date_from
        if filters.prescribed_date_to is not None:
            conditions.append("prescribed_date <= @prescribed_date_to")
            params["prescribed_date_to"] = filters.prescribed_date_to

        return await self._select(
            conditions, params, "prescribed_date DESC, order_id ASC",
            filters.limit, filters.offset,
        )

    async def get_active_orders(self, subject_id: str) -> list[MedicationOrder]:
        return await self.list_orders(
            MedicationOrderFilter(subject_id=subject_id, status="active", limit=self.max_limit)
        )

    async def get_orders_by_prescription(
        self, subject_id: str, prescribed_by: str, prescribed_date: datetime,
    ) -> list[MedicationOrder]:
        """Orders written by one prescriber at one prescription time."""
        return await self._select(
            [
                "patient_id = @subject_id",
                "prescribed_by = @prescribed_by",
                "prescribed_date = @prescribed_date",
            ],
            {
                "subject_id": subject_id,
                "prescribed_by": prescribed_by,
                "prescribed_date": prescribed_date,
            },
            "order_id ASC", self.max_limit, 0,
        )

    async def update_order(
        self,
        subject_id: str,
        order_id: str,
        expected_version: int,
        patch: MedicationOrderPatch,
        updated_by: str,
    ) -> MedicationOrder:
        return await self.update_with_version(
            order_id, expected_version, patch, updated_by, subject_id=subject_id,
        )

    async def delete(self, subject_id: str, order_id: str, deleted_by: str) -> None:
        await self.soft_delete(order_id, deleted_by, subject_id=subject_id)
