from datetime import date
from types import SimpleNamespace

import pytest

from billing import (
    LoyaltySettings, apply_payment, client_financial_summary, currency_symbol, format_amount,
    order_items_total, record_balance, reservation_loyalty_points, reservation_price, total_spent,
)
from errors import ValidationError


def _order(status, host_id, prix_total):
    return SimpleNamespace(status=status, host_id=host_id, prix_total=prix_total)


def _client(host_id, credit=None, points=None):
    return SimpleNamespace(host_id=host_id, credit=credit, points_fidelite=points)


def test_record_balance():
    assert record_balance(100, 40) == 60
    assert record_balance(19.99, 0.99) == 19.0
    assert record_balance(None, 10) is None
    assert record_balance(10, None) is None


def test_format_amount():
    assert format_amount(12.5, '€') == '€12.50'
    assert format_amount(0, '$') == '$0.00'
    assert format_amount(None, '€') == 'N/A'


def test_currency_symbol_prefers_record_then_host():
    assert currency_symbol('CHF', '€') == 'CHF'
    assert currency_symbol(None, '€') == '€'
    assert currency_symbol(None, None) == '$'


def test_order_items_total():
    items = [{'price': 2.5, 'quantity': 2}, {'price': 1.8, 'quantity': 1}]
    assert order_items_total(items) == 6.80


def test_order_items_total_rejects_bad_lines():
    with pytest.raises(ValidationError):
        order_items_total([{'price': 'abc', 'quantity': 1}])
    with pytest.raises(ValidationError):
        order_items_total([{'price': 2.0}])
    with pytest.raises(ValidationError):
        order_items_total([{'price': 2.0, 'quantity': 0}])


def test_order_items_total_needs_whole_quantities():
    with pytest.raises(ValidationError) as exc:
        order_items_total([{'price': 2, 'quantity': 1.5}])
    assert exc.value.message == 'Item 0 quantity must be a whole number'
    assert order_items_total([{'price': 2, 'quantity': '3'}]) == 6


def test_total_spent_counts_only_given_statuses():
    orders = [_order('completed', 1, 50), _order('confirmed', 1, 20), _order('pending', 1, 100)]
    assert total_spent(orders) == 70
    assert total_spent(orders, statuses=('completed',)) == 50
    assert total_spent(orders, host_id=2) == 0


class TestClientFinancialSummary:

    def test_net_due_per_host(self):
        orders = [
            _order('completed', 1, 50),
            _order('confirmed', 1, 20),
            _order('pending', 1, 100),
            _order('cancelled', 1, 30),
            _order('completed', 1, None),
        ]
        clients = [_client(1, credit=10, points=40), _client(2, credit=25, points=5)]

        summary = client_financial_summary(orders, clients)

        assert summary.total_credit == 35
        assert summary.total_loyalty_points == 45
        assert summary.hosts[1].total_spent == 70
        assert summary.hosts[1].net_due == 60
        # no counted orders: net due is minus the credit
        assert summary.hosts[2].total_spent == 0
        assert summary.hosts[2].net_due == -25

    def test_hosts_come_from_orders_too(self):
        summary = client_financial_summary([_order('completed', 3, 12.5)], [])
        assert summary.hosts[3].net_due == 12.5
        assert summary.to_dict()['hosts'][0] == {
            'hostId': 3, 'totalSpentAtHost': 12.5, 'credit': 0.0, 'pointsFidelite': 0, 'netDue': 12.5,
        }

    def test_missing_credit_counts_as_zero(self):
        summary = client_financial_summary([], [_client(1)])
        assert summary.total_credit == 0
        assert summary.hosts[1].net_due == 0


class TestLoyalty:

    settings = LoyaltySettings(enabled=True, points_per_euro_spent=0.5,
                               points_per_night_room=10, points_per_table_booking=5)

    def test_room_points(self):
        stay = SimpleNamespace(type='Chambre', prix_total=99.99,
                               date_arrivee=date(2025, 6, 1), date_depart=date(2025, 6, 4))
        # floor(49.995 + 30)
        assert reservation_loyalty_points(stay, self.settings) == 79

    def test_table_points(self):
        booking = SimpleNamespace(type='Table', prix_total=15, date_arrivee=date(2025, 6, 1), date_depart=None)
        assert reservation_loyalty_points(booking, self.settings) == 12

    def test_disabled(self):
        stay = SimpleNamespace(type='Chambre', prix_total=500,
                               date_arrivee=date(2025, 6, 1), date_depart=date(2025, 6, 4))
        assert reservation_loyalty_points(stay, LoyaltySettings()) == 0


def test_reservation_price():
    room = SimpleNamespace(type='Chambre', prix_par_nuit=80, prix_fixe_reservation=None)
    table = SimpleNamespace(type='Table', prix_par_nuit=None, prix_fixe_reservation=15)
    assert reservation_price(room, date(2025, 6, 1), date(2025, 6, 4)) == 240
    assert reservation_price(table, date(2025, 6, 1)) == 15
    assert reservation_price(SimpleNamespace(type='Chambre', prix_par_nuit=None), date(2025, 6, 1)) is None


class TestApplyPayment:

    def _record(self, paid=0):
        return SimpleNamespace(payments=[], montant_paye=paid)

    def test_cash_payment_raises_paid_amount(self):
        record = self._record(10)
        apply_payment(record, SimpleNamespace(type='cash', montant=15.5))
        assert record.montant_paye == 25.5
        assert len(record.payments) == 1

    def test_credit_payment_draws_down_client_credit(self):
        record = self._record()
        guest = SimpleNamespace(credit=50, points_fidelite=0)
        apply_payment(record, SimpleNamespace(type='credit', montant=20), guest)
        assert guest.credit == 30
        assert record.montant_paye == 20

    def test_insufficient_credit(self):
        record = self._record()
        guest = SimpleNamespace(credit=5, points_fidelite=0)
        with pytest.raises(ValidationError):
            apply_payment(record, SimpleNamespace(type='credit', montant=20), guest)
        assert guest.credit == 5
        assert record.payments == []

    def test_points_payment(self):
        record = self._record()
        guest = SimpleNamespace(credit=None, points_fidelite=100)
        apply_payment(record, SimpleNamespace(type='points', montant=30), guest)
        assert guest.points_fidelite == 70

    def test_points_pay_whole_amounts_only(self):
        record = self._record()
        guest = SimpleNamespace(credit=None, points_fidelite=100)
        with pytest.raises(ValidationError):
            apply_payment(record, SimpleNamespace(type='points', montant=4.5), guest)
        assert guest.points_fidelite == 100
        assert record.montant_paye == 0

    def test_non_positive_amount(self):
        with pytest.raises(ValidationError):
            apply_payment(self._record(), SimpleNamespace(type='cash', montant=0))
