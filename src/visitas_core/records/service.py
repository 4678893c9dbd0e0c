"""Medical record repository."""

from visitas_core.common.rows import ColumnMap
from visitas_core.common.versioning import INITIAL_VERSION, VERSIONED_COLUMNS, VersionedRepository
from visitas_core.records.schemas import (
    MedicalRecord,
    MedicalRecordCreate,
    MedicalRecordFilter,
    MedicalRecordPatch,
)

RECORD_COLUMNS = ColumnMap(
    MedicalRecord,
    (
        "record_id", "patient_id",
        "visit_started_at", "visit_ended_at", "visit_type", "performed_by", "status",
        "schedule_id", "soap_content",
        "template_id", "source_record_id", "source_type", "audio_file_url",
        *VERSIONED_COLUMNS,
    ),
    fields={"patient_id": "subject_id"},
    json_columns=("soap_content",),
)


class MedicalRecordRepository(VersionedRepository[MedicalRecord, MedicalRecordPatch]):
    table = "medical_records"
    id_column = "record_id"
    columns = RECORD_COLUMNS

    async def create(
        self, subject_id: str, request: MedicalRecordCreate, created_by: str,
    ) -> MedicalRecord:
        now = self.clock()
        record = MedicalRecord(
            record_id=self.id_factory(),
            subject_id=subject_id,
            **request.model_dump(),
            version=INITIAL_VERSION,
            created_at=now,
            created_by=created_by,
            updated_at=now,
        )
        return await self._insert(record)

    async def get(self, subject_id: str, record_id: str) -> MedicalRecord:
        return await self._fetch_live(record_id, subject_id)

    async def list_records(self, filters: MedicalRecordFilter) -> list[MedicalRecord]:
        conditions = []
        params = {}
        equality = {
            "patient_id": filters.subject_id,
            "performed_by": filters.performed_by,
            "status": filters.status,
            "visit_type": filters.visit_type,
        }
        for column, value in equality.items():
            if value is not None:
                conditions.append(f"{column} = @{column}")
                params[column] = value
        if filters.visit_started_from is not None:
            conditions.append("visit_started_at >= @visit_started_from")
            params["visit_started_from"] = filters.visit_started_from
        if filters.visit_started_to is not None:
            conditions.append("visit_started_at <= @visit_started_to")
            params["visit_started_to"] = filters.visit_started_to

        return await self._select(
            conditions, params, "visit_started_at DESC, record_id ASC",
            filters.limit, filters.offset,
        )

    async def get_latest_by_subject(self, subject_id: str, limit: int = 10) -> list[MedicalRecord]:
        return await self.list_records(MedicalRecordFilter(subject_id=subject_id, limit=limit))

    async def update_record(
        self,
        subject_id: str,
        record_id: str,
        expected_version: int,
        patch: MedicalRecordPatch,
        updated_by: str,
    ) -> MedicalRecord:
        return await self.update_with_version(
            record_id, expected_version, patch, updated_by, subject_id=subject_id,
        )

    async def delete(self, subject_id: str, record_id: str, deleted_by: str) -> None:
        await self.soft_delete(record_id, deleted_by, subject_id=subject_id)
