"""
Rules shared by everyone who places orders and reservations: guests on the
QR code and booking pages, and hosts placing on behalf of a client.
"""

from billing import reservation_price
from errors import ConflictError, ValidationError
from forms import options_price_adjustment, serialize_answers, validate_answers, validate_option_selection
from lifecycle import ReservationStatus
from models import Reservation
from validators import parse_int

# Reservations in these states no longer hold their room
RELEASED_STATUSES = (ReservationStatus.CANCELLED.value, ReservationStatus.CHECKED_OUT.value)

# Statuses a reservation may be created in; later ones go through the lifecycle
OPENING_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


def check_reservable(host, location):
    if location.type not in ('Chambre', 'Table'):
        raise ValidationError('Only rooms and tables can be reserved')
    enabled = host.enable_room_reservations if location.type == 'Chambre' else host.enable_table_reservations
    if not enabled:
        kind = 'Room' if location.type == 'Chambre' else 'Table'
        raise ValidationError(f"{kind} reservations are disabled for this host")
    return location


def check_room_available(location, arrivee, depart, exclude_id=None):
    """Reject a room booking that overlaps a live one"""
    conflicting = Reservation.query.filter(
        Reservation.location_id == location.id,
        Reservation.status.notin_(RELEASED_STATUSES),
        Reservation.date_arrivee < depart,
        Reservation.date_depart > arrivee,
    )
    if exclude_id is not None:
        conflicting = conflicting.filter(Reservation.id != exclude_id)
    if conflicting.first():
        raise ConflictError('Room is not available for the selected dates')


def room_is_free(location, arrivee, depart):
    try:
        check_room_available(location, arrivee, depart)
    except ConflictError:
        return False
    return True


def check_stay(reservation, location):
    if location.type == 'Chambre':
        if reservation.date_depart is None:
            raise ValidationError('Missing field: dateDepart')
        if reservation.date_depart <= reservation.date_arrivee:
            raise ValidationError('dateDepart must be after dateArrivee')
        check_room_available(location, reservation.date_arrivee, reservation.date_depart, reservation.id)


def price_stay(reservation, location, price=None):
    reservation.prix_total = price if price is not None else reservation_price(
        location, reservation.date_arrivee, reservation.date_depart)


def service_order_fields(service, raw_answers):
    """Order columns for a service; answers are checked against its form"""
    if service.form is not None:
        answers = validate_answers(service.form.fields, raw_answers)
    else:
        answers = {'directOrder': True}
    return {
        'service_id': service.id,
        'prix_total': service.price,
        'donnees_formulaire': serialize_answers(answers),
    }


def menu_item_order_fields(item, data):
    """Order columns for a menu item, taking the quantity out of stock.

    Price is (item price + option adjustments) x quantity. A quantity above
    one is kept with the selected options.
    """
    if not item.is_available:
        raise ValidationError(f"{item.name} is not available")
    quantity = parse_int(data.get('quantity'), 'quantity', minimum=1) or 1
    selected = validate_option_selection(item, data.get('selectedOptions'))
    if item.stock is not None:
        if item.stock < quantity:
            raise ValidationError(f"Not enough {item.name} in stock")
        item.stock -= quantity

    unit_price = float(item.price or 0) + options_price_adjustment(item, selected)
    answers = dict(selected)
    if quantity > 1:
        answers['quantity'] = quantity
    return {
        'menu_item_id': item.id,
        'prix_total': round(unit_price * quantity, 2),
        'donnees_formulaire': serialize_answers(answers),
    }
