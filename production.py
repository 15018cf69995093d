"""
Production display feed: confirmed food and beverage orders for a host's
kitchen screen, oldest first.

Screens poll every ``PRODUCTION_REFRESH_SECONDS``. A refresh that arrives
while another one for the same host is still running gets the last
snapshot back instead of starting a second query.
"""

import logging
import threading
from datetime import datetime

from enrichment import NameResolver, UNKNOWN_LOCATION
from forms import describe_options, deserialize_answers
from lifecycle import OrderStatus
from models import MenuItem, Order, RoomOrTable

logger = logging.getLogger(__name__)


def load_production_orders(host_id):
    """Confirmed menu item orders for the host, enriched for display"""
    orders = (
        Order.query
        .filter(Order.host_id == host_id,
                Order.status == OrderStatus.CONFIRMED.value,
                Order.menu_item_id.isnot(None))
        .order_by(Order.date_heure.asc())
        .all()
    )
    resolver = NameResolver()
    items = resolver.load(MenuItem, [o.menu_item_id for o in orders])
    locations = resolver.load(RoomOrTable, [o.location_id for o in orders])

    tickets = []
    for order in orders:
        item = items.get(order.menu_item_id)
        if item is None:
            continue
        location = locations.get(order.location_id)
        answers = deserialize_answers(order.donnees_formulaire)
        tickets.append({
            'id': order.id,
            'itemName': item.name,
            'itemType': 'food_beverage',
            'locationName': location.display_name if location else UNKNOWN_LOCATION,
            'clientNom': order.client_name or 'Client Anonyme',
            'dateHeure': order.date_heure.isoformat() if order.date_heure else None,
            'parsedFormData': answers,
            'options': describe_options(item, answers),
            'notes': order.notes,
        })
    return tickets


class ProductionFeed:
    """Per-host snapshot guarded by an "already refreshing" flag"""

    def __init__(self, host_id, loader=load_production_orders):
        self.host_id = host_id
        self._loader = loader
        self._refreshing = threading.Lock()
        self._snapshot = []
        self._refreshed_at = None

    def refresh(self):
        """Return (orders, refreshed_at, skipped)"""
        if not self._refreshing.acquire(blocking=False):
            logger.debug('Production refresh for host %s already running', self.host_id)
            return self._snapshot, self._refreshed_at, True
        try:
            self._snapshot = self._loader(self.host_id)
            self._refreshed_at = datetime.utcnow()
        finally:
            self._refreshing.release()
        return self._snapshot, self._refreshed_at, False


_feeds = {}
_feeds_lock = threading.Lock()


def feed_for(host_id):
    with _feeds_lock:
        if host_id not in _feeds:
            _feeds[host_id] = ProductionFeed(host_id)
        return _feeds[host_id]


def reset_feeds():
    with _feeds_lock:
        _feeds.clear()
