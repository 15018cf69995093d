"""
Financial figures for orders, reservations and client records.

Two kinds of "balance due" coexist and are kept apart:

* record balance (``soldeDu``): ``prixTotal - montantPaye`` of a single
  order or reservation;
* client net position (``net_due``): what a client spent at one host minus
  the credit held on their client record at that host.

Everything here is computed from records that were already loaded; nothing
is stored.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from errors import ValidationError

SPENDING_STATUSES = ('completed', 'confirmed')


def _amount(value) -> float:
    return float(value) if value is not None else 0.0


def record_balance(prix_total, montant_paye) -> Optional[float]:
    if prix_total is None or montant_paye is None:
        return None
    return round(float(prix_total) - float(montant_paye), 2)


def format_amount(value, symbol='$') -> str:
    if value is None:
        return 'N/A'
    return f"{symbol}{float(value):.2f}"


def currency_symbol(record_currency=None, host_currency=None, default='$') -> str:
    return record_currency or host_currency or default


def order_items_total(items) -> float:
    """Sum of price x quantity over order lines; quantities are whole units"""
    total = 0.0
    for index, item in enumerate(items):
        try:
            price = float(item['price'])
            quantity = float(item['quantity'])
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Item {index} needs a numeric price and quantity")
        if price < 0 or quantity <= 0:
            raise ValidationError(f"Item {index} has a negative price or a non-positive quantity")
        if not quantity.is_integer():
            raise ValidationError(f"Item {index} quantity must be a whole number")
        total += price * quantity
    return round(total, 2)


def total_spent(orders: Iterable, statuses=SPENDING_STATUSES, host_id=None) -> float:
    spent = sum(
        _amount(o.prix_total)
        for o in orders
        if o.status in statuses and (host_id is None or o.host_id == host_id)
    )
    return round(spent, 2)


@dataclass
class HostPosition:
    host_id: int
    total_spent: float = 0.0
    credit: float = 0.0
    loyalty_points: int = 0

    @property
    def net_due(self) -> float:
        return round(self.total_spent - self.credit, 2)

    def to_dict(self):
        return {
            'hostId': self.host_id,
            'totalSpentAtHost': self.total_spent,
            'credit': self.credit,
            'pointsFidelite': self.loyalty_points,
            'netDue': self.net_due,
        }


@dataclass
class FinancialSummary:
    total_credit: float = 0.0
    total_loyalty_points: int = 0
    hosts: Dict[int, HostPosition] = field(default_factory=dict)

    def position(self, host_id) -> HostPosition:
        if host_id not in self.hosts:
            self.hosts[host_id] = HostPosition(host_id)
        return self.hosts[host_id]

    def to_dict(self):
        return {
            'totalCredit': self.total_credit,
            'totalLoyaltyPoints': self.total_loyalty_points,
            'hosts': [p.to_dict() for p in self.hosts.values()],
        }


def client_financial_summary(orders: Iterable, clients: Iterable) -> FinancialSummary:
    """Aggregate a user's client records and orders across every host.

    Only completed and confirmed orders count as spending. A host appears in
    the result as soon as the user has either a client record or a counted
    order there.
    """
    summary = FinancialSummary()
    for record in clients:
        credit = _amount(record.credit)
        points = int(record.points_fidelite or 0)
        summary.total_credit += credit
        summary.total_loyalty_points += points
        position = summary.position(record.host_id)
        position.credit += credit
        position.loyalty_points += points

    for order in orders:
        if order.status not in SPENDING_STATUSES or order.host_id is None:
            continue
        summary.position(order.host_id).total_spent += _amount(order.prix_total)

    summary.total_credit = round(summary.total_credit, 2)
    for position in summary.hosts.values():
        position.total_spent = round(position.total_spent, 2)
        position.credit = round(position.credit, 2)
    return summary


# Loyalty

@dataclass
class LoyaltySettings:
    enabled: bool = False
    points_per_euro_spent: float = 0.0
    points_per_night_room: float = 0.0
    points_per_table_booking: float = 0.0

    @classmethod
    def from_host(cls, host):
        if host is None:
            return cls()
        return cls(
            enabled=bool(host.loyalty_enabled),
            points_per_euro_spent=host.points_per_euro_spent or 0.0,
            points_per_night_room=host.points_per_night_room or 0.0,
            points_per_table_booking=host.points_per_table_booking or 0.0,
        )


def stay_nights(date_arrivee, date_depart) -> int:
    if date_arrivee is None or date_depart is None:
        return 1
    return max(1, (date_depart - date_arrivee).days)


def reservation_loyalty_points(reservation, settings: LoyaltySettings) -> int:
    """Points earned when a reservation is checked out.

    floor(prixTotal x pointsPerEuroSpent) plus a per-night bonus for rooms
    or a flat bonus for tables.
    """
    if not settings.enabled:
        return 0
    points = _amount(reservation.prix_total) * settings.points_per_euro_spent
    if reservation.type == 'Chambre':
        points += stay_nights(reservation.date_arrivee, reservation.date_depart) * settings.points_per_night_room
    elif reservation.type == 'Table':
        points += settings.points_per_table_booking
    # round first so 28.999999 does not floor to 28
    return int(math.floor(round(points, 6)))


def reservation_price(location, date_arrivee, date_depart=None) -> Optional[float]:
    if location is None:
        return None
    if location.type == 'Chambre':
        if location.prix_par_nuit is None:
            return None
        return round(float(location.prix_par_nuit) * stay_nights(date_arrivee, date_depart), 2)
    if location.prix_fixe_reservation is None:
        return None
    return float(location.prix_fixe_reservation)


# Payments

def apply_payment(record, payment, client=None):
    """Attach a payment to an order or reservation and raise montantPaye.

    ``credit`` and ``points`` payments draw down the client record; one
    loyalty point is worth one currency unit.
    """
    amount = _amount(payment.montant)
    if amount <= 0:
        raise ValidationError('Payment amount must be positive')

    if payment.type == 'credit':
        if client is None:
            raise ValidationError('A client record is required to pay with credit')
        if _amount(client.credit) < amount:
            raise ValidationError('Insufficient credit')
        client.credit = round(_amount(client.credit) - amount, 2)
    elif payment.type == 'points':
        if client is None:
            raise ValidationError('A client record is required to pay with points')
        if not amount.is_integer():
            raise ValidationError('Loyalty points only pay whole amounts')
        if (client.points_fidelite or 0) < amount:
            raise ValidationError('Insufficient loyalty points')
        client.points_fidelite = (client.points_fidelite or 0) - int(amount)

    record.payments.append(payment)
    record.montant_paye = round(_amount(record.montant_paye) + amount, 2)
    return record
