from shared.events import build_event
from shared.rabbitmq import RabbitPublisher

from .config import RABBIT_URL, SERVICE_NAME

publisher = RabbitPublisher(RABBIT_URL, SERVICE_NAME)


def booking_payload(booking) -> dict:
    return {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "venue_id": booking.venue_id,
        "coach_id": booking.coach_id,
        "date": booking.date.isoformat(),
        "start_time": booking.start_time,
        "end_time": booking.end_time,
        "status": booking.status.value,
        "total_amount": booking.total_amount,
    }


async def publish_event(event_type: str, data: dict) -> bool:
    """Fire-and-forget: a disabled or failing broker never fails the booking operation."""
    return await publisher.publish(build_event(event_type, data))
