from datetime import date as Date, datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    NO_SHOW = "NO_SHOW"


# statuses whose interval still blocks the venue/coach
ACTIVE_STATUSES = (
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
)

TERMINAL_STATUSES = (
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
    BookingStatus.NO_SHOW,
)


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PayeeRole(str, Enum):
    VENUE_LISTER = "VENUE_LISTER"
    COACH = "COACH"


class ServiceMode(str, Enum):
    OWN_VENUE = "OWN_VENUE"
    FREELANCE = "FREELANCE"
    HYBRID = "HYBRID"


class Payment(BaseModel):
    payee_id: str
    payee_role: PayeeRole
    amount: float = Field(ge=0)
    status: PaymentStatus = PaymentStatus.PENDING
    payment_link: str | None = None
    paid_at: datetime | None = None


# ---- catalog views (owned by venue-service / coach-service) ----

class WeeklyWindow(BaseModel):
    day_of_week: int = Field(ge=0, le=6)  # 0 = Sunday
    start_time: str
    end_time: str


class VenueInfo(BaseModel):
    id: str
    owner_id: str
    price_per_hour: float = Field(ge=0)
    allow_external_coaches: bool = False
    name: str | None = None


class CoachInfo(BaseModel):
    id: str
    user_id: str
    hourly_rate: float = Field(ge=0)
    service_mode: ServiceMode
    availability: List[WeeklyWindow] = Field(default_factory=list)
    availability_by_sport: Dict[str, List[WeeklyWindow]] = Field(default_factory=dict)


# ---- requests / responses ----

class InitiateBookingRequest(BaseModel):
    user_id: str
    venue_id: str
    coach_id: str | None = None
    date: Date
    start_time: str
    end_time: str
    sport: str | None = None
    participant_name: str | None = None
    participant_user_id: str | None = None
    participant_age: int | None = Field(default=None, ge=0)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    venue_id: str
    coach_id: str | None = None
    sport: str | None = None
    date: Date
    start_time: str
    end_time: str
    payments: List[Payment]
    total_amount: float
    status: BookingStatus
    expires_at: datetime
    verification_token: str | None = None
    qr_code: str | None = None
    participant_name: str | None = None
    participant_user_id: str | None = None
    participant_age: int | None = None
    checked_in_at: datetime | None = None
    created_at: datetime | None = None


class PaymentLink(BaseModel):
    payee_id: str
    payee_role: PayeeRole
    amount: float
    payment_link: str


class InitiateBookingResponse(BaseModel):
    booking: BookingResponse
    payment_links: List[PaymentLink]


class BookingPage(BaseModel):
    items: List[BookingResponse]
    total: int
    page: int
    total_pages: int


class TimeRange(BaseModel):
    start_time: str
    end_time: str


class AvailabilityResponse(BaseModel):
    venue_id: str
    date: Date
    booked_slots: List[TimeRange]
    available_slots: List[str]


class SlotCheckResponse(BaseModel):
    resource_id: str
    date: Date
    start_time: str
    end_time: str
    available: bool
