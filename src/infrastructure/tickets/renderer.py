# src/infrastructure/tickets/renderer.py

from jinja2 import Environment, StrictUndefined

from src.infrastructure.db.models import Booking, Event

_TICKET_TEMPLATE = """\
SRS EVENTS - EVENT TICKET

Booking ID: {{ booking.booking_code }}
Event: {{ event.title }}
Date: {{ event.start_date.strftime('%d %b %Y') }}
Time: {{ event.start_date.strftime('%H:%M') }}
Location: {{ event.location }}
Seats: {{ booking.seat_count }}
{%- if booking.member_ticket_count or booking.guest_ticket_count or booking.kid_ticket_count %}
  Members: {{ booking.member_ticket_count }}  Guests: {{ booking.guest_ticket_count }}  Kids: {{ booking.kid_ticket_count }}
{%- endif %}
Amount Paid: INR {{ booking.final_amount }}
{%- if booking.discount_amount %}
  (discount {{ booking.discount_code }}: -{{ booking.discount_amount }})
{%- endif %}
Status: {{ booking.status.value }}
Entries: {{ booking.remaining_scans }} of {{ booking.qr_scan_limit }} remaining

QR Code: {{ booking.qr_token }}

Please present this ticket at the event venue.
"""


class TicketRenderer:
    """Stateless plain-text ticket rendering."""

    def __init__(self, template_source: str = _TICKET_TEMPLATE):
        env = Environment(undefined=StrictUndefined, keep_trailing_newline=True)
        self._template = env.from_string(template_source)

    def render_ticket(self, booking: Booking, event: Event) -> bytes:
        return self._template.render(booking=booking, event=event).encode("utf-8")
