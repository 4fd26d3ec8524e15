from urllib.parse import urlencode

from .config import PAYMENT_BASE_URL
from .errors import ValidationError
from .schemas import Payment, PaymentStatus, PayeeRole
from .timeslots import duration_hours


def calculate_price(start: str, end: str, rate_per_hour: float) -> float:
    hours = duration_hours(start, end)
    if hours <= 0:
        raise ValidationError(
            "end_time must be after start_time",
            details={"start_time": start, "end_time": end},
        )
    return round(hours * float(rate_per_hour), 2)


def calculate_split_amounts(
    venue_price: float,
    venue_owner_id: str,
    coach_price: float | None = None,
    coach_user_id: str | None = None,
) -> list[Payment]:
    payments = [
        Payment(
            payee_id=venue_owner_id,
            payee_role=PayeeRole.VENUE_LISTER,
            amount=venue_price,
        )
    ]

    if coach_price and coach_price > 0 and coach_user_id:
        payments.append(
            Payment(
                payee_id=coach_user_id,
                payee_role=PayeeRole.COACH,
                amount=coach_price,
            )
        )

    return payments


def validate_payment_status(payments: list[Payment]) -> bool:
    # a booking without payments must never count as settled
    if not payments:
        return False
    return all(p.status == PaymentStatus.PAID for p in payments)


def build_payment_link(payee_id: str, amount: float, booking_id: str, base_url: str = PAYMENT_BASE_URL) -> str:
    query = urlencode({"bookingId": booking_id, "payeeId": payee_id, "amount": f"{amount:.2f}"})
    return f"{base_url}/pay?{query}"


def attach_payment_links(payments: list[Payment], booking_id: str) -> list[Payment]:
    return [
        p.model_copy(update={"payment_link": build_payment_link(p.payee_id, p.amount, booking_id)})
        for p in payments
    ]
