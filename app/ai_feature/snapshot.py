"""
DATA SNAPSHOT - read-only copy of the rows generated code may look at

Purpose:
    1. Describe the logical tables (SchemaDescriptor) for prompt building
    2. Read the current patient / inventory rows from the database
    3. Hand them over as plain JSON-able dicts, never as a DB handle

Data Flow:
    DB → snapshot() → {"patients": [...], "inventory": [...]} → sandbox stdin
"""

from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import models
from app.ai_feature.errors import SnapshotUnavailable


# table name -> ordered field names
SchemaDescriptor = Mapping[str, Tuple[str, ...]]

DATA_SCHEMA: SchemaDescriptor = MappingProxyType(
    {
        "patients": (
            "patient_id",
            "age",
            "gender",
            "diagnosis",
            "medications",
            "admission_date",
            "discharge_date",
        ),
        "inventory": (
            "drug_name",
            "quantity",
            "unit_cost",
            "expiry_date",
            "supplier",
            "category",
        ),
    }
)

TABLE_MODELS = {
    "patients": models.Patient,
    "inventory": models.InventoryItem,
}


def _to_json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


class DatabaseSnapshotProvider:
    """
    Reads the rows listed in DATA_SCHEMA through an async session.

    Example:
        provider = DatabaseSnapshotProvider(db)
        data = await provider.snapshot()
        data["inventory"][0]["drug_name"]  # "Lisinopril"
    """

    def __init__(
        self,
        db: AsyncSession,
        row_limit: int = 5000,
        schema: SchemaDescriptor = DATA_SCHEMA,
    ):
        self.db = db
        self.row_limit = row_limit
        self.schema = schema

    async def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        data: Dict[str, List[Dict[str, Any]]] = {}
        try:
            for table, fields in self.schema.items():
                model = TABLE_MODELS[table]
                columns = [getattr(model, field) for field in fields]
                query = select(*columns).order_by(model.id).limit(self.row_limit)
                result = await self.db.execute(query)
                data[table] = [
                    {field: _to_json_value(value) for field, value in zip(fields, row)}
                    for row in result.all()
                ]
        except SQLAlchemyError as e:
            raise SnapshotUnavailable(f"Could not read data snapshot: {e}") from e
        return data

    async def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        try:
            for table in self.schema:
                model = TABLE_MODELS[table]
                result = await self.db.execute(select(func.count(model.id)))
                counts[table] = result.scalar_one()
        except SQLAlchemyError as e:
            raise SnapshotUnavailable(f"Could not count rows: {e}") from e
        return counts
