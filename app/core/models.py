from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    TIMESTAMP,
    Text,
)
from sqlalchemy.sql import func

from app.core.database import Base


# =========================
# Patient
# =========================
class Patient(Base):
    """
    One admission record, filled by the CSV upload flow.
    The assistant only ever reads it.
    """

    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, autoincrement=True)

    patient_id = Column(String, unique=True, index=True)
    age = Column(Integer)
    gender = Column(String)
    diagnosis = Column(Text)
    medications = Column(Text)  # comma separated: "Metformin, Insulin"

    # stored as uploaded (ISO dates in practice)
    admission_date = Column(String)
    discharge_date = Column(String)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# =========================
# Inventory
# =========================
class InventoryItem(Base):
    """Pharmacy stock line: one drug from one supplier."""

    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)

    drug_name = Column(String, nullable=False, index=True)
    quantity = Column(Integer, default=0)
    unit_cost = Column(Numeric(12, 2), default=0)
    expiry_date = Column(String)
    supplier = Column(String)
    category = Column(String, default="General")

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
