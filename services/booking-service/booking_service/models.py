from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from .db import Base
from .schemas import BookingStatus, Payment


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)

    user_id = Column(String, nullable=False, index=True)
    venue_id = Column(String, nullable=False)
    coach_id = Column(String, nullable=True)
    sport = Column(String, nullable=True)

    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:mm
    end_time = Column(String(5), nullable=False)

    payments = Column(JSON, nullable=False, default=list)
    total_amount = Column(Numeric(10, 2, asdecimal=False), nullable=False)

    status = Column(
        Enum(BookingStatus, name="booking_status", native_enum=False, length=20),
        nullable=False,
        index=True,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    verification_token = Column(String(36), nullable=True, unique=True)
    qr_code = Column(Text, nullable=True)

    participant_name = Column(String, nullable=True)
    participant_user_id = Column(String, nullable=True)
    participant_age = Column(Integer, nullable=True)

    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    # every write is conditional on the version that was read
    version = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_bookings_venue_id_date", "venue_id", "date"),
        Index("ix_bookings_coach_id_date", "coach_id", "date"),
    )
    __mapper_args__ = {"version_id_col": version}

    def payment_records(self) -> list[Payment]:
        return [Payment.model_validate(p) for p in (self.payments or [])]

    def set_payment_records(self, payments: list[Payment]):
        # reassign so the JSON column is flagged dirty
        self.payments = [p.model_dump(mode="json") for p in payments]


class SlotGuard(Base):
    """
    One row per (resource, date). Booking writers upsert it before the conflict
    check, so the row lock serializes them across processes until commit.
    """

    __tablename__ = "slot_guards"

    key = Column(String(200), primary_key=True)
    touched_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
