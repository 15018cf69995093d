"""
Order and reservation status model.

Statuses are closed sets. Moves between them go through the transition
tables below; terminal states accept no further move. With
``strict=False`` any known status may replace any other.
"""

import logging
from datetime import datetime
from enum import Enum

from billing import LoyaltySettings, reservation_loyalty_points
from errors import InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PREPARING = 'preparing'
    READY = 'ready'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class ReservationStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CHECKED_IN = 'checked-in'
    CHECKED_OUT = 'checked-out'
    CANCELLED = 'cancelled'


ORDER_TRANSITIONS = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    OrderStatus.CONFIRMED: [OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    OrderStatus.READY: [OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    OrderStatus.COMPLETED: [],
    OrderStatus.CANCELLED: [],
}

RESERVATION_TRANSITIONS = {
    ReservationStatus.PENDING: [ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED],
    ReservationStatus.CONFIRMED: [ReservationStatus.CHECKED_IN, ReservationStatus.CANCELLED],
    ReservationStatus.CHECKED_IN: [ReservationStatus.CHECKED_OUT, ReservationStatus.CANCELLED],
    ReservationStatus.CHECKED_OUT: [],
    ReservationStatus.CANCELLED: [],
}


def _parse(enum_cls, value, label):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(s.value for s in enum_cls)
        raise ValidationError(f"Invalid {label} status '{value}'. Allowed: {allowed}")


def parse_order_status(value) -> OrderStatus:
    return _parse(OrderStatus, value, 'order')


def parse_reservation_status(value) -> ReservationStatus:
    return _parse(ReservationStatus, value, 'reservation')


def _table_for(status):
    return ORDER_TRANSITIONS if isinstance(status, OrderStatus) else RESERVATION_TRANSITIONS


def is_terminal(status) -> bool:
    if not isinstance(status, Enum):
        status = (
            parse_reservation_status(status) if status in ReservationStatus._value2member_map_
            else parse_order_status(status)
        )
    return not _table_for(status)[status]


def can_transition(current, target) -> bool:
    return target in _table_for(current)[current]


def _move(record, current, target, strict, label):
    if current == target:
        return False
    if strict and not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot change {label} {record.id} from '{current.value}' to '{target.value}'"
        )
    record.status = target.value
    logger.info('%s %s: %s -> %s', label.capitalize(), record.id, current.value, target.value)
    return True


def transition_order(order, status, strict=True) -> bool:
    """Move an order to ``status``; returns False when it already was there"""
    current = parse_order_status(order.status)
    target = status if isinstance(status, OrderStatus) else parse_order_status(status)
    return _move(order, current, target, strict, 'order')


def transition_reservation(reservation, status, strict=True, client=None, host=None, notes=None) -> bool:
    current = parse_reservation_status(reservation.status)
    target = status if isinstance(status, ReservationStatus) else parse_reservation_status(status)
    if target == ReservationStatus.CHECKED_OUT and current != target:
        return check_out(reservation, client=client, host=host, notes=notes, strict=strict)
    moved = _move(reservation, current, target, strict, 'reservation')
    if moved and target == ReservationStatus.CHECKED_IN and reservation.online_checkin_status == 'pending-review':
        reservation.online_checkin_status = 'completed'
    return moved


# Named operations

def confirm_order(order, strict=True):
    return transition_order(order, OrderStatus.CONFIRMED, strict)


def cancel_order(order, strict=True):
    return transition_order(order, OrderStatus.CANCELLED, strict)


def complete_order(order, strict=True):
    return transition_order(order, OrderStatus.COMPLETED, strict)


def confirm_reservation(reservation, strict=True):
    return transition_reservation(reservation, ReservationStatus.CONFIRMED, strict)


def cancel_reservation(reservation, strict=True):
    return transition_reservation(reservation, ReservationStatus.CANCELLED, strict)


def check_in(reservation, strict=True):
    return transition_reservation(reservation, ReservationStatus.CHECKED_IN, strict)


def check_out(reservation, client=None, host=None, notes=None, strict=True) -> bool:
    """Close a stay and credit the loyalty points it earned.

    Points are added to the reservation and, when the reservation is linked
    to a client record, to ``Client.points_fidelite``. A reservation that is
    already checked out is left untouched, so points accrue once.
    """
    current = parse_reservation_status(reservation.status)
    if not _move(reservation, current, ReservationStatus.CHECKED_OUT, strict, 'reservation'):
        return False

    reservation.client_initiated_checkout_time = datetime.utcnow()
    if notes:
        reservation.checkout_notes = notes

    points = reservation_loyalty_points(reservation, LoyaltySettings.from_host(host))
    if points:
        reservation.points_gagnes = (reservation.points_gagnes or 0) + points
        if client is not None:
            client.points_fidelite = (client.points_fidelite or 0) + points
        logger.info(
            'Reservation %s earned %s loyalty points (client %s)',
            reservation.id, points, client.id if client is not None else None,
        )
    return True
