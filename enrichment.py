"""
Batch name resolution for order and reservation listings.

Orders and reservations only carry foreign keys. ``NameResolver`` collects
the ids of a whole listing, loads each entity type with a single ``IN``
query and keeps the result for the rest of the request.
"""

import logging

from models import Host, MenuItem, RoomOrTable, Service, User

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = 'Lieu Inconnu'
UNKNOWN_HOST = 'Établissement Inconnu'
UNKNOWN_ITEM = 'Article Inconnu'
ANONYMOUS_CLIENT = 'Client Anonyme'


class NameResolver:
    def __init__(self):
        self._cache = {}

    def load(self, model, ids):
        """Return {id: instance} for the ids, fetching only unseen ones"""
        cache = self._cache.setdefault(model, {})
        wanted = {i for i in ids if i is not None}
        missing = wanted - cache.keys()
        if missing:
            rows = model.query.filter(model.id.in_(sorted(missing))).all()
            for row in rows:
                cache[row.id] = row
            for absent in missing - {r.id for r in rows}:
                cache[absent] = None
            logger.debug('Resolved %d %s ids', len(missing), model.__name__)
        return {i: cache[i] for i in wanted}

    def get(self, model, id_):
        if id_ is None:
            return None
        return self.load(model, [id_]).get(id_)

    def resolve_names(self, model, ids):
        """Return {id: display name} for a set of ids"""
        return {i: (_display_name(obj) if obj is not None else None) for i, obj in self.load(model, ids).items()}


def _display_name(obj):
    if isinstance(obj, RoomOrTable):
        return obj.display_name
    if isinstance(obj, Service):
        return obj.title
    return obj.name


def _item_label(order, services, menu_items):
    if order.service_id is not None and services.get(order.service_id) is not None:
        return services[order.service_id].title, 'service'
    if order.menu_item_id is not None and menu_items.get(order.menu_item_id) is not None:
        return menu_items[order.menu_item_id].name, 'food_beverage'
    return UNKNOWN_ITEM, 'unknown'


def enrich_orders(orders, resolver=None):
    """Serialize orders with host, location, item and client names"""
    resolver = resolver or NameResolver()
    hosts = resolver.load(Host, [o.host_id for o in orders])
    locations = resolver.load(RoomOrTable, [o.location_id for o in orders])
    services = resolver.load(Service, [o.service_id for o in orders])
    menu_items = resolver.load(MenuItem, [o.menu_item_id for o in orders])
    users = resolver.load(User, [o.user_id for o in orders if not o.client_name])

    enriched = []
    for order in orders:
        data = order.to_dict()
        host = hosts.get(order.host_id)
        location = locations.get(order.location_id)
        item_name, item_type = _item_label(order, services, menu_items)
        user = users.get(order.user_id)
        data.update({
            'hostName': host.name if host else UNKNOWN_HOST,
            'locationName': location.display_name if location else UNKNOWN_LOCATION,
            'serviceName': item_name,
            'itemType': item_type,
            'clientDisplayName': order.client_name or (user.name if user else None) or ANONYMOUS_CLIENT,
        })
        enriched.append(data)
    return enriched


def enrich_reservations(reservations, resolver=None):
    resolver = resolver or NameResolver()
    hosts = resolver.load(Host, [r.host_id for r in reservations])
    locations = resolver.load(RoomOrTable, [r.location_id for r in reservations])

    enriched = []
    for reservation in reservations:
        data = reservation.to_dict()
        host = hosts.get(reservation.host_id)
        location = locations.get(reservation.location_id)
        data.update({
            'hostName': host.name if host else UNKNOWN_HOST,
            'locationName': location.name if location else UNKNOWN_LOCATION,
            'locationType': location.type if location else None,
            'clientDisplayName': reservation.client_name or ANONYMOUS_CLIENT,
        })
        enriched.append(data)
    return enriched
