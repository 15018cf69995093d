"""
Host management API, mounted under /api/hosts/<host_id>.

Every route needs a logged in admin or host user. The host is loaded once
per request into ``g.host``; records from another host are reported as not
found.
"""

import logging
from datetime import date

from flask import Blueprint, current_app, g, request

from auth import current_session
from billing import apply_payment, total_spent
from enrichment import NameResolver, enrich_orders, enrich_reservations
from errors import AuthenticationError, NotFoundError, PermissionDenied, ValidationError, \
    require_fields, success_response
from lifecycle import OrderStatus, ReservationStatus, cancel_order, cancel_reservation, check_in, check_out, \
    complete_order, confirm_order, confirm_reservation, parse_reservation_status, transition_order, \
    transition_reservation
from models import db, check_version, Client, CustomForm, FormField, Host, MenuCard, MenuCategory, MenuItem, \
    Order, Payment, Reservation, RoomOrTable, Service, ServiceCategory, Site, Tag, CLIENT_TYPES, \
    FORM_FIELD_TYPES, LOCATION_TYPES, PAYMENT_TYPES
from placement import OPENING_STATUSES, check_reservable, check_stay, menu_item_order_fields, price_stay, \
    service_order_fields
from production import feed_for
from validators import get_or_404, json_body, parse_bool, parse_choice, parse_date, parse_float, \
    parse_id_list, parse_int

logger = logging.getLogger(__name__)

bp = Blueprint('host', __name__, url_prefix='/api/hosts/<int:host_id>')


@bp.before_request
def load_host():
    if request.method == 'OPTIONS':
        return
    session = current_session()
    if not session.is_authenticated:
        raise AuthenticationError('Unauthorized')
    if session.role not in ('admin', 'host'):
        raise PermissionDenied('Requires role: admin, host')
    g.host = get_or_404(Host, (request.view_args or {}).get('host_id'), 'Host')


def owned(model, id_, label):
    """Fetch a record of the current host or raise NotFoundError"""
    obj = model.query.get(id_)
    if obj is None or obj.host_id != g.host.id:
        raise NotFoundError(f"{label} not found")
    return obj


def owned_or_none(model, value, field, label):
    if value in (None, ''):
        return None
    return owned(model, parse_int(value, field), label)


def detach(column, value):
    """Null out a foreign key that pointed at a deleted record"""
    db.session.query(column.class_).filter(column == value).update({column: None}, synchronize_session=False)


def strict_transitions():
    return current_app.config['STRICT_STATUS_TRANSITIONS']


# ============================================
# LOCATIONS
# ============================================

@bp.route('/locations')
def list_locations(host_id):
    query = RoomOrTable.query.filter_by(host_id=host_id)
    if request.args.get('type'):
        query = query.filter_by(type=request.args['type'])
    if request.args.get('siteId'):
        query = query.filter_by(global_site_id=parse_int(request.args['siteId'], 'siteId'))
    return success_response([l.to_dict() for l in query.order_by(RoomOrTable.name).all()])


def apply_location_fields(location, data):
    if 'name' in data:
        location.name = (data['name'] or '').strip()
    if 'type' in data:
        location.type = parse_choice(data['type'], 'type', LOCATION_TYPES)
    if 'globalSiteId' in data:
        location.global_site_id = owned(Site, parse_int(data['globalSiteId'], 'globalSiteId', required=True),
                                        'Site').id
    if 'parentLocationId' in data:
        parent = owned_or_none(RoomOrTable, data['parentLocationId'], 'parentLocationId', 'Parent location')
        if parent is not None and location.id is not None and parent.id == location.id:
            raise ValidationError('A location cannot be its own parent')
        location.parent_location_id = parent.id if parent else None
    if 'capacity' in data:
        location.capacity = parse_int(data['capacity'], 'capacity', minimum=0)
    if 'description' in data:
        location.description = data['description'] or ''
    if 'prixParNuit' in data:
        location.prix_par_nuit = parse_float(data['prixParNuit'], 'prixParNuit', minimum=0)
    if 'prixFixeReservation' in data:
        location.prix_fixe_reservation = parse_float(data['prixFixeReservation'], 'prixFixeReservation', minimum=0)
    if 'tagIds' in data:
        tag_ids = parse_id_list(data['tagIds'], 'tagIds')
        for tag_id in tag_ids:
            owned(Tag, tag_id, 'Tag')
        location.tag_ids = tag_ids
    if 'menuCardId' in data:
        card = owned_or_none(MenuCard, data['menuCardId'], 'menuCardId', 'Menu card')
        location.menu_card_id = card.id if card else None


@bp.route('/locations', methods=['POST'])
def create_location(host_id):
    data = json_body()
    require_fields(data, 'name', 'type', 'globalSiteId', message='Name, type, and globalSiteId are required')
    location = RoomOrTable(host_id=host_id, tag_ids=[])
    apply_location_fields(location, data)
    db.session.add(location)
    db.session.commit()
    logger.info('Location %s created for host %s', location.id, host_id)
    return success_response(location.to_dict(), 201)


@bp.route('/locations/<int:location_id>', methods=['PUT'])
def update_location(host_id, location_id):
    location = owned(RoomOrTable, location_id, 'Location')
    apply_location_fields(location, json_body())
    if not location.name:
        raise ValidationError('Missing field: name')
    db.session.commit()
    return success_response(location.to_dict())


@bp.route('/locations/<int:location_id>', methods=['DELETE'])
def delete_location(host_id, location_id):
    """Orders and reservations keep their history with no location"""
    location = owned(RoomOrTable, location_id, 'Location')
    detach(RoomOrTable.parent_location_id, location.id)
    detach(Order.location_id, location.id)
    detach(Reservation.location_id, location.id)
    detach(Client.location_id, location.id)
    db.session.delete(location)
    db.session.commit()
    logger.info('Location %s deleted', location_id)
    return success_response(message='Location deleted')


# ============================================
# TAGS
# ============================================

@bp.route('/tags')
def list_tags(host_id):
    return success_response([t.to_dict() for t in Tag.query.filter_by(host_id=host_id).order_by(Tag.name).all()])


@bp.route('/tags', methods=['POST'])
def create_tag(host_id):
    data = json_body()
    name = (data.get('name') or '').strip()
    require_fields({'name': name}, 'name')
    tag = Tag(host_id=host_id, name=name)
    db.session.add(tag)
    db.session.commit()
    return success_response(tag.to_dict(), 201)


@bp.route('/tags/<int:tag_id>', methods=['PUT'])
def update_tag(host_id, tag_id):
    tag = owned(Tag, tag_id, 'Tag')
    name = (json_body().get('name') or '').strip()
    require_fields({'name': name}, 'name')
    tag.name = name
    db.session.commit()
    return success_response(tag.to_dict())


@bp.route('/tags/<int:tag_id>', methods=['DELETE'])
def delete_tag(host_id, tag_id):
    tag = owned(Tag, tag_id, 'Tag')
    stripped = 0
    for location in RoomOrTable.query.filter_by(host_id=host_id).all():
        if tag.id in (location.tag_ids or []):
            location.tag_ids = [t for t in location.tag_ids if t != tag.id]
            stripped += 1
    db.session.delete(tag)
    db.session.commit()
    logger.info('Tag %s deleted, removed from %d locations', tag_id, stripped)
    return success_response({'locationsUpdated': stripped}, message='Tag deleted')


# ============================================
# SERVICE CATEGORIES
# ============================================

@bp.route('/service-categories')
def list_service_categories(host_id):
    categories = ServiceCategory.query.filter_by(host_id=host_id).order_by(ServiceCategory.name).all()
    return success_response([c.to_dict() for c in categories])


@bp.route('/service-categories', methods=['POST'])
def create_service_category(host_id):
    data = json_body()
    name = (data.get('name') or '').strip()
    require_fields({'name': name}, 'name')
    category = ServiceCategory(host_id=host_id, name=name, image=data.get('image'))
    db.session.add(category)
    db.session.commit()
    return success_response(category.to_dict(), 201)


@bp.route('/service-categories/<int:category_id>', methods=['PUT'])
def update_service_category(host_id, category_id):
    category = owned(ServiceCategory, category_id, 'Service category')
    data = json_body()
    if 'name' in data:
        name = (data['name'] or '').strip()
        require_fields({'name': name}, 'name')
        category.name = name
    if 'image' in data:
        category.image = data['image']
    db.session.commit()
    return success_response(category.to_dict())


@bp.route('/service-categories/<int:category_id>', methods=['DELETE'])
def delete_service_category(host_id, category_id):
    category = owned(ServiceCategory, category_id, 'Service category')
    detach(Service.category_id, category.id)
    db.session.delete(category)
    db.session.commit()
    return success_response(message='Service category deleted')


# ============================================
# SERVICES
# ============================================

@bp.route('/services')
def list_services(host_id):
    query = Service.query.filter_by(host_id=host_id)
    if request.args.get('categoryId'):
        query = query.filter_by(category_id=parse_int(request.args['categoryId'], 'categoryId'))
    return success_response([s.to_dict() for s in query.order_by(Service.title).all()])


def apply_service_fields(service, data):
    if 'titre' in data or 'title' in data:
        service.title = (data.get('titre', data.get('title')) or '').strip()
    if 'description' in data:
        service.description = data['description'] or ''
    if 'image' in data:
        service.image = data['image']
    if 'categorieId' in data:
        category = owned_or_none(ServiceCategory, data['categorieId'], 'categorieId', 'Service category')
        service.category_id = category.id if category else None
    if 'formulaireId' in data:
        form = owned_or_none(CustomForm, data['formulaireId'], 'formulaireId', 'Form')
        service.form_id = form.id if form else None
    if 'prix' in data:
        service.price = parse_float(data['prix'], 'prix', minimum=0)
    if 'targetLocationIds' in data:
        ids = parse_id_list(data['targetLocationIds'], 'targetLocationIds')
        for location_id in ids:
            owned(RoomOrTable, location_id, 'Location')
        service.target_location_ids = ids
    if 'loginRequired' in data:
        service.login_required = parse_bool(data['loginRequired'])
    if not service.title:
        raise ValidationError('Missing field: titre')


@bp.route('/services', methods=['POST'])
def create_service(host_id):
    service = Service(host_id=host_id, target_location_ids=[])
    apply_service_fields(service, json_body())
    db.session.add(service)
    db.session.commit()
    logger.info('Service %s created for host %s', service.id, host_id)
    return success_response(service.to_dict(), 201)


@bp.route('/services/<int:service_id>', methods=['PUT'])
def update_service(host_id, service_id):
    service = owned(Service, service_id, 'Service')
    apply_service_fields(service, json_body())
    db.session.commit()
    return success_response(service.to_dict())


@bp.route('/services/<int:service_id>', methods=['DELETE'])
def delete_service(host_id, service_id):
    service = owned(Service, service_id, 'Service')
    detach(Order.service_id, service.id)
    db.session.delete(service)
    db.session.commit()
    logger.info('Service %s deleted', service_id)
    return success_response(message='Service deleted')


# ============================================
# CUSTOM FORMS
# ============================================

@bp.route('/forms')
def list_forms(host_id):
    forms = CustomForm.query.filter_by(host_id=host_id).order_by(CustomForm.name).all()
    return success_response([f.to_dict() for f in forms])


@bp.route('/forms', methods=['POST'])
def create_form(host_id):
    name = (json_body().get('name') or '').strip()
    require_fields({'name': name}, 'name')
    form = CustomForm(host_id=host_id, name=name)
    db.session.add(form)
    db.session.commit()
    return success_response(form.to_dict(with_fields=True), 201)


@bp.route('/forms/<int:form_id>')
def get_form(host_id, form_id):
    return success_response(owned(CustomForm, form_id, 'Form').to_dict(with_fields=True))


@bp.route('/forms/<int:form_id>', methods=['PUT'])
def update_form(host_id, form_id):
    form = owned(CustomForm, form_id, 'Form')
    name = (json_body().get('name') or '').strip()
    require_fields({'name': name}, 'name')
    form.name = name
    db.session.commit()
    return success_response(form.to_dict(with_fields=True))


@bp.route('/forms/<int:form_id>', methods=['DELETE'])
def delete_form(host_id, form_id):
    form = owned(CustomForm, form_id, 'Form')
    detach(Service.form_id, form.id)
    db.session.delete(form)
    db.session.commit()
    return success_response(message='Form deleted')


def apply_field_values(field, data):
    if 'label' in data:
        field.label = (data['label'] or '').strip()
    if 'type' in data:
        field.type = parse_choice(data['type'], 'type', FORM_FIELD_TYPES)
    if 'obligatoire' in data:
        field.required = parse_bool(data['obligatoire'])
    if 'ordre' in data:
        field.order = parse_int(data['ordre'], 'ordre', required=True)
    if 'placeholder' in data:
        field.placeholder = data['placeholder']
    if 'options' in data:
        field.options = data['options']
    if not field.label:
        raise ValidationError('Missing field: label')


@bp.route('/forms/<int:form_id>/fields', methods=['POST'])
def create_form_field(host_id, form_id):
    form = owned(CustomForm, form_id, 'Form')
    field = FormField(form_id=form.id, type='text', order=len(form.fields))
    apply_field_values(field, json_body())
    db.session.add(field)
    db.session.commit()
    return success_response(field.to_dict(), 201)


def owned_field(form_id, field_id):
    form = owned(CustomForm, form_id, 'Form')
    field = FormField.query.get(field_id)
    if field is None or field.form_id != form.id:
        raise NotFoundError('Form field not found')
    return field


@bp.route('/forms/<int:form_id>/fields/<int:field_id>', methods=['PUT'])
def update_form_field(host_id, form_id, field_id):
    field = owned_field(form_id, field_id)
    apply_field_values(field, json_body())
    db.session.commit()
    return success_response(field.to_dict())


@bp.route('/forms/<int:form_id>/fields/<int:field_id>', methods=['DELETE'])
def delete_form_field(host_id, form_id, field_id):
    db.session.delete(owned_field(form_id, field_id))
    db.session.commit()
    return success_response(message='Form field deleted')


# ============================================
# MENU CARDS
# ============================================

@bp.route('/menu-cards')
def list_menu_cards(host_id):
    with_items = parse_bool(request.args.get('withItems'))
    cards = MenuCard.query.filter_by(host_id=host_id).order_by(MenuCard.name).all()
    return success_response([c.to_dict(with_items=with_items) for c in cards])


@bp.route('/menu-cards', methods=['POST'])
def create_menu_card(host_id):
    data = json_body()
    name = (data.get('name') or '').strip()
    require_fields({'name': name}, 'name')
    site = owned_or_none(Site, data.get('globalSiteId'), 'globalSiteId', 'Site')
    card = MenuCard(host_id=host_id, name=name, global_site_id=site.id if site else None,
                    is_active=parse_bool(data.get('isActive'), True))
    db.session.add(card)
    db.session.commit()
    return success_response(card.to_dict(with_items=True), 201)


@bp.route('/menu-cards/<int:card_id>')
def get_menu_card(host_id, card_id):
    return success_response(owned(MenuCard, card_id, 'Menu card').to_dict(with_items=True))


@bp.route('/menu-cards/<int:card_id>', methods=['PUT'])
def update_menu_card(host_id, card_id):
    card = owned(MenuCard, card_id, 'Menu card')
    data = json_body()
    if 'name' in data:
        name = (data['name'] or '').strip()
        require_fields({'name': name}, 'name')
        card.name = name
    if 'globalSiteId' in data:
        site = owned_or_none(Site, data['globalSiteId'], 'globalSiteId', 'Site')
        card.global_site_id = site.id if site else None
    if 'isActive' in data:
        card.is_active = parse_bool(data['isActive'])
    db.session.commit()
    return success_response(card.to_dict(with_items=True))


@bp.route('/menu-cards/<int:card_id>', methods=['DELETE'])
def delete_menu_card(host_id, card_id):
    card = owned(MenuCard, card_id, 'Menu card')
    detach(RoomOrTable.menu_card_id, card.id)
    for category in card.categories:
        for item in category.items:
            detach(Order.menu_item_id, item.id)
    db.session.delete(card)
    db.session.commit()
    logger.info('Menu card %s deleted', card_id)
    return success_response(message='Menu card deleted')


def owned_category(card_id, category_id):
    card = owned(MenuCard, card_id, 'Menu card')
    category = MenuCategory.query.get(category_id)
    if category is None or category.menu_card_id != card.id:
        raise NotFoundError('Menu category not found')
    return category


@bp.route('/menu-cards/<int:card_id>/categories', methods=['POST'])
def create_menu_category(host_id, card_id):
    card = owned(MenuCard, card_id, 'Menu card')
    data = json_body()
    name = (data.get('name') or '').strip()
    require_fields({'name': name}, 'name')
    order = parse_int(data.get('order'), 'order')
    category = MenuCategory(menu_card_id=card.id, name=name,
                            order=order if order is not None else len(card.categories))
    db.session.add(category)
    db.session.commit()
    return success_response(category.to_dict(with_items=True), 201)


@bp.route('/menu-cards/<int:card_id>/categories/<int:category_id>', methods=['PUT'])
def update_menu_category(host_id, card_id, category_id):
    category = owned_category(card_id, category_id)
    data = json_body()
    if 'name' in data:
        name = (data['name'] or '').strip()
        require_fields({'name': name}, 'name')
        category.name = name
    if 'order' in data:
        category.order = parse_int(data['order'], 'order', required=True)
    db.session.commit()
    return success_response(category.to_dict(with_items=True))


@bp.route('/menu-cards/<int:card_id>/categories/<int:category_id>', methods=['DELETE'])
def delete_menu_category(host_id, card_id, category_id):
    category = owned_category(card_id, category_id)
    for item in category.items:
        detach(Order.menu_item_id, item.id)
    db.session.delete(category)
    db.session.commit()
    return success_response(message='Menu category deleted')


def parse_option_groups(value):
    """Check the optionGroups JSON shape: groups with id, name and options"""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError('optionGroups must be a list')
    groups = []
    for index, group in enumerate(value):
        if not isinstance(group, dict) or not group.get('id') or not group.get('name'):
            raise ValidationError(f"Option group {index} needs an id and a name")
        selection = parse_choice(group.get('selectionType'), 'selectionType', ('single', 'multiple'), default='single')
        options = group.get('options') or []
        if not isinstance(options, list):
            raise ValidationError(f"Option group {group['name']} options must be a list")
        cleaned = []
        for option in options:
            if not isinstance(option, dict) or not option.get('id') or not option.get('name'):
                raise ValidationError(f"Every option of {group['name']} needs an id and a name")
            cleaned.append({
                'id': str(option['id']),
                'name': option['name'],
                'priceAdjustment': parse_float(option.get('priceAdjustment'), 'priceAdjustment') or 0,
            })
        groups.append({
            'id': str(group['id']),
            'name': group['name'],
            'selectionType': selection,
            'isRequired': parse_bool(group.get('isRequired')),
            'options': cleaned,
        })
    return groups


def apply_menu_item_fields(item, data):
    if 'name' in data:
        item.name = (data['name'] or '').strip()
    if 'description' in data:
        item.description = data['description'] or ''
    if 'price' in data:
        item.price = parse_float(data['price'], 'price', required=True, minimum=0)
    if 'imageUrl' in data:
        item.image_url = data['imageUrl']
    if 'isAvailable' in data:
        item.is_available = parse_bool(data['isAvailable'], True)
    if 'optionGroups' in data:
        item.option_groups = parse_option_groups(data['optionGroups'])
        item.is_configurable = bool(item.option_groups)
    if 'isConfigurable' in data:
        item.is_configurable = parse_bool(data['isConfigurable'])
    if 'stock' in data:
        item.stock = parse_int(data['stock'], 'stock', minimum=0)
    if not item.name:
        raise ValidationError('Missing field: name')


@bp.route('/menu-cards/<int:card_id>/categories/<int:category_id>/items', methods=['POST'])
def create_menu_item(host_id, card_id, category_id):
    category = owned_category(card_id, category_id)
    item = MenuItem(menu_category_id=category.id, price=0, option_groups=[])
    apply_menu_item_fields(item, json_body())
    db.session.add(item)
    db.session.commit()
    return success_response(item.to_dict(), 201)


def owned_menu_item(item_id):
    item = MenuItem.query.get(item_id)
    if item is None or item.host_id != g.host.id:
        raise NotFoundError('Menu item not found')
    return item


@bp.route('/menu-items/<int:item_id>', methods=['PUT'])
def update_menu_item(host_id, item_id):
    item = owned_menu_item(item_id)
    apply_menu_item_fields(item, json_body())
    db.session.commit()
    return success_response(item.to_dict())


@bp.route('/menu-items/<int:item_id>', methods=['DELETE'])
def delete_menu_item(host_id, item_id):
    item = owned_menu_item(item_id)
    detach(Order.menu_item_id, item.id)
    db.session.delete(item)
    db.session.commit()
    return success_response(message='Menu item deleted')


# ============================================
# CLIENTS
# ============================================

@bp.route('/clients')
def list_clients(host_id):
    query = Client.query.filter_by(host_id=host_id)
    if request.args.get('type'):
        query = query.filter_by(type=request.args['type'])
    return success_response([c.to_dict() for c in query.order_by(Client.name).all()])


def apply_client_fields(client, data):
    if 'nom' in data or 'name' in data:
        client.name = (data.get('nom', data.get('name')) or '').strip()
    if 'email' in data:
        client.email = (data['email'] or '').strip().lower() or None
    if 'telephone' in data:
        client.telephone = data['telephone']
    if 'type' in data:
        client.type = parse_choice(data['type'], 'type', CLIENT_TYPES)
    if 'dateArrivee' in data:
        client.date_arrivee = parse_date(data['dateArrivee'], 'dateArrivee', required=False)
    if 'dateDepart' in data:
        client.date_depart = parse_date(data['dateDepart'], 'dateDepart', required=False)
    if 'locationId' in data:
        location = owned_or_none(RoomOrTable, data['locationId'], 'locationId', 'Location')
        client.location_id = location.id if location else None
    if 'notes' in data:
        client.notes = data['notes'] or ''
    if 'credit' in data:
        client.credit = parse_float(data['credit'], 'credit', minimum=0)
    if 'pointsFidelite' in data:
        client.points_fidelite = parse_int(data['pointsFidelite'], 'pointsFidelite', minimum=0)
    if 'userId' in data:
        client.user_id = parse_int(data['userId'], 'userId')
    if not client.name:
        raise ValidationError('Missing field: nom')


@bp.route('/clients', methods=['POST'])
def create_client(host_id):
    client = Client(host_id=host_id)
    apply_client_fields(client, json_body())
    db.session.add(client)
    db.session.commit()
    logger.info('Client %s created for host %s', client.id, host_id)
    return success_response(client.to_dict(), 201)


@bp.route('/clients/<int:client_id>', methods=['PUT'])
def update_client(host_id, client_id):
    client = owned(Client, client_id, 'Client')
    apply_client_fields(client, json_body())
    db.session.commit()
    return success_response(client.to_dict())


@bp.route('/clients/<int:client_id>', methods=['DELETE'])
def delete_client(host_id, client_id):
    client = owned(Client, client_id, 'Client')
    detach(Order.client_id, client.id)
    detach(Reservation.client_id, client.id)
    db.session.delete(client)
    db.session.commit()
    return success_response(message='Client deleted')


@bp.route('/clients/<int:client_id>/file')
def client_file(host_id, client_id):
    """Client record with its orders, reservations and spending"""
    client = owned(Client, client_id, 'Client')
    matches = [Order.client_id == client.id]
    if client.user_id:
        matches.append(Order.user_id == client.user_id)
    orders = (
        Order.query
        .filter(Order.host_id == host_id, db.or_(*matches))
        .order_by(Order.date_heure.desc())
        .all()
    )
    reservations = (
        Reservation.query
        .filter_by(host_id=host_id, client_id=client.id)
        .order_by(Reservation.date_arrivee.desc())
        .all()
    )
    resolver = NameResolver()
    return success_response({
        'client': client.to_dict(),
        'totalSpent': total_spent(orders, statuses=(OrderStatus.COMPLETED.value,)),
        'orders': enrich_orders(orders, resolver),
        'reservations': enrich_reservations(reservations, resolver),
    })


# ============================================
# ORDERS
# ============================================

@bp.route('/orders')
def list_orders(host_id):
    query = Order.query.filter(Order.host_id == host_id)
    if request.args.get('status'):
        query = query.filter(Order.status == request.args['status'])
    if request.args.get('serviceId'):
        query = query.filter(Order.service_id == parse_int(request.args['serviceId'], 'serviceId'))
    if request.args.get('categoryId'):
        category_id = parse_int(request.args['categoryId'], 'categoryId')
        service_ids = [s.id for s in Service.query.filter_by(host_id=host_id, category_id=category_id)]
        query = query.filter(Order.service_id.in_(service_ids))
    if request.args.get('clientName'):
        query = query.filter(Order.client_name.ilike(f"%{request.args['clientName']}%"))
    orders = query.order_by(Order.date_heure.desc()).all()
    return success_response(enrich_orders(orders))


@bp.route('/orders/<int:order_id>')
def get_order(host_id, order_id):
    return success_response(enrich_orders([owned(Order, order_id, 'Order')])[0])


@bp.route('/orders/<int:order_id>/status', methods=['PATCH'])
def update_order_status(host_id, order_id):
    order = owned(Order, order_id, 'Order')
    data = json_body()
    require_fields(data, 'status')
    check_version(order, data.get('version'))
    changed = transition_order(order, data['status'], strict=strict_transitions())
    db.session.commit()
    return success_response(enrich_orders([order])[0],
                            message='Order status updated' if changed else 'Order status unchanged')


ORDER_ACTIONS = {
    'confirm': confirm_order,
    'cancel': cancel_order,
    'complete': complete_order,
}


@bp.route('/orders/<int:order_id>/<action>', methods=['POST'])
def order_action(host_id, order_id, action):
    """POST .../confirm, .../cancel or .../complete"""
    move = ORDER_ACTIONS.get(action)
    if move is None:
        raise NotFoundError(f"Unknown order action '{action}'")
    order = owned(Order, order_id, 'Order')
    check_version(order, json_body().get('version'))
    changed = move(order, strict=strict_transitions())
    db.session.commit()
    return success_response(enrich_orders([order])[0],
                            message='Order status updated' if changed else 'Order status unchanged')


@bp.route('/orders', methods=['POST'])
def place_order(host_id):
    """Order a service or a menu item for a client at one of the host's locations"""
    data = json_body()
    location = owned(RoomOrTable, parse_int(data.get('locationId'), 'locationId', required=True), 'Location')
    client = owned_or_none(Client, data.get('clientId'), 'clientId', 'Client')
    client_name = client.name if client else (data.get('clientNom') or '').strip()
    if not client_name:
        raise ValidationError('Please select or enter a client name.')

    service_id, item_id = data.get('serviceId'), data.get('menuItemId')
    if (service_id is None) == (item_id is None):
        raise ValidationError('Give either serviceId or menuItemId')
    if service_id is not None:
        service = owned(Service, parse_int(service_id, 'serviceId'), 'Service')
        fields = service_order_fields(service, data.get('donneesFormulaire'))
    else:
        item = owned(MenuItem, parse_int(item_id, 'menuItemId'), 'Menu item')
        fields = menu_item_order_fields(item, data)

    order = Order(
        host_id=host_id,
        location_id=location.id,
        client_id=client.id if client else None,
        user_id=client.user_id if client else None,
        client_name=client_name,
        status=OrderStatus.PENDING.value,
        montant_paye=0,
        currency=g.host.currency,
        notes=data.get('notes'),
        **fields,
    )
    db.session.add(order)
    db.session.commit()
    logger.info('Host %s placed order %s for %s', host_id, order.id, client_name)
    return success_response(enrich_orders([order])[0], 201, message='Order placed')


def build_payment(data):
    return Payment(
        type=parse_choice(data.get('type'), 'type', PAYMENT_TYPES),
        montant=parse_float(data.get('montant'), 'montant', required=True),
        notes=data.get('notes'),
    )


@bp.route('/orders/<int:order_id>/payments', methods=['POST'])
def add_order_payment(host_id, order_id):
    order = owned(Order, order_id, 'Order')
    data = json_body()
    check_version(order, data.get('version'))
    client = Client.query.get(order.client_id) if order.client_id else None
    apply_payment(order, build_payment(data), client)
    db.session.commit()
    logger.info('Payment recorded on order %s, balance %s', order.id, order.solde_du)
    return success_response(order.to_dict(), 201)


# ============================================
# RESERVATIONS
# ============================================

@bp.route('/reservations')
def list_reservations(host_id):
    query = Reservation.query.filter(Reservation.host_id == host_id)
    if request.args.get('locationId'):
        query = query.filter(Reservation.location_id == parse_int(request.args['locationId'], 'locationId'))
    month = parse_int(request.args.get('month'), 'month')
    year = parse_int(request.args.get('year'), 'year')
    if month or year:
        if not (month and year) or not 1 <= month <= 12:
            raise ValidationError('month (1-12) and year must be given together')
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        # Stays that touch the month
        query = query.filter(
            Reservation.date_arrivee < end,
            db.func.coalesce(Reservation.date_depart, Reservation.date_arrivee) >= start,
        )
    reservations = query.order_by(Reservation.date_arrivee).all()
    return success_response(enrich_reservations(reservations))


def reservation_location(value):
    location = owned(RoomOrTable, parse_int(value, 'locationId', required=True), 'Location')
    return check_reservable(g.host, location)


@bp.route('/reservations', methods=['POST'])
def create_reservation(host_id):
    """Book a location; new stays open as pending or confirmed only"""
    data = json_body()
    require_fields(data, 'locationId', 'clientName', 'dateArrivee',
                   message='locationId, clientName, and dateArrivee are required')
    location = reservation_location(data['locationId'])
    client = owned_or_none(Client, data.get('clientId'), 'clientId', 'Client')
    status = parse_reservation_status(data.get('status') or ReservationStatus.PENDING.value)
    if status not in OPENING_STATUSES:
        raise ValidationError(f"A new reservation must be pending or confirmed, not '{status.value}'")

    reservation = Reservation(
        host_id=host_id,
        location_id=location.id,
        type=location.type,
        client_id=client.id if client else None,
        client_name=data['clientName'].strip(),
        date_arrivee=parse_date(data['dateArrivee'], 'dateArrivee'),
        date_depart=parse_date(data.get('dateDepart'), 'dateDepart', required=False),
        nombre_personnes=parse_int(data.get('nombrePersonnes'), 'nombrePersonnes', minimum=1) or 1,
        animaux_domestiques=parse_bool(data.get('animauxDomestiques')),
        notes=data.get('notes', ''),
        channel=data.get('channel'),
        status=ReservationStatus.PENDING.value,
        montant_paye=0,
        currency=data.get('currency') or g.host.currency,
        online_checkin_status='not-started',
    )
    check_stay(reservation, location)
    price_stay(reservation, location, parse_float(data.get('prixTotal'), 'prixTotal', minimum=0))

    db.session.add(reservation)
    db.session.flush()
    if status == ReservationStatus.CONFIRMED:
        confirm_reservation(reservation, strict=strict_transitions())
    db.session.commit()
    logger.info('Reservation %s created on %s %s', reservation.id, location.type, location.id)
    return success_response(enrich_reservations([reservation])[0], 201)


@bp.route('/reservations/<int:reservation_id>')
def get_reservation(host_id, reservation_id):
    return success_response(enrich_reservations([owned(Reservation, reservation_id, 'Reservation')])[0])


@bp.route('/reservations/<int:reservation_id>', methods=['PUT'])
def update_reservation(host_id, reservation_id):
    reservation = owned(Reservation, reservation_id, 'Reservation')
    data = json_body()
    check_version(reservation, data.get('version'))

    location = reservation.location
    if 'locationId' in data:
        location = reservation_location(data['locationId'])
        reservation.location_id = location.id
        reservation.type = location.type
    if 'clientName' in data:
        name = (data['clientName'] or '').strip()
        require_fields({'clientName': name}, 'clientName')
        reservation.client_name = name
    if 'clientId' in data:
        client = owned_or_none(Client, data['clientId'], 'clientId', 'Client')
        reservation.client_id = client.id if client else None
    if 'dateArrivee' in data:
        reservation.date_arrivee = parse_date(data['dateArrivee'], 'dateArrivee')
    if 'dateDepart' in data:
        reservation.date_depart = parse_date(data['dateDepart'], 'dateDepart', required=False)
    if 'nombrePersonnes' in data:
        reservation.nombre_personnes = parse_int(data['nombrePersonnes'], 'nombrePersonnes', required=True, minimum=1)
    if 'animauxDomestiques' in data:
        reservation.animaux_domestiques = parse_bool(data['animauxDomestiques'])
    for key, attr in (('notes', 'notes'), ('channel', 'channel'), ('currency', 'currency')):
        if key in data:
            setattr(reservation, attr, data[key])

    stay_changed = any(k in data for k in ('locationId', 'dateArrivee', 'dateDepart'))
    if stay_changed and location is not None:
        with db.session.no_autoflush:
            check_stay(reservation, location)
    if 'prixTotal' in data:
        reservation.prix_total = parse_float(data['prixTotal'], 'prixTotal', minimum=0)
    elif stay_changed and location is not None:
        price_stay(reservation, location)

    if data.get('status'):
        transition_reservation(reservation, data['status'], strict=strict_transitions(),
                               client=reservation.client, host=g.host)

    db.session.commit()
    return success_response(enrich_reservations([reservation])[0])


@bp.route('/reservations/<int:reservation_id>', methods=['DELETE'])
def delete_reservation(host_id, reservation_id):
    reservation = owned(Reservation, reservation_id, 'Reservation')
    db.session.delete(reservation)
    db.session.commit()
    logger.info('Reservation %s deleted', reservation_id)
    return success_response(message='Reservation deleted')


@bp.route('/reservations/<int:reservation_id>/status', methods=['POST'])
def update_reservation_status(host_id, reservation_id):
    """Move a reservation; checking out credits loyalty points"""
    reservation = owned(Reservation, reservation_id, 'Reservation')
    data = json_body()
    require_fields(data, 'status')
    check_version(reservation, data.get('version'))
    changed = transition_reservation(
        reservation, data['status'], strict=strict_transitions(),
        client=reservation.client, host=g.host, notes=data.get('notes'),
    )
    db.session.commit()
    return success_response(enrich_reservations([reservation])[0],
                            message='Reservation status updated' if changed else 'Reservation status unchanged')


RESERVATION_ACTIONS = {
    'confirm': confirm_reservation,
    'cancel': cancel_reservation,
    'check-in': check_in,
}


@bp.route('/reservations/<int:reservation_id>/<action>', methods=['POST'])
def reservation_action(host_id, reservation_id, action):
    """POST .../confirm, .../cancel, .../check-in or .../check-out"""
    if action != 'check-out' and action not in RESERVATION_ACTIONS:
        raise NotFoundError(f"Unknown reservation action '{action}'")
    reservation = owned(Reservation, reservation_id, 'Reservation')
    data = json_body()
    check_version(reservation, data.get('version'))
    if action == 'check-out':
        changed = check_out(reservation, client=reservation.client, host=g.host, notes=data.get('notes'),
                            strict=strict_transitions())
    else:
        changed = RESERVATION_ACTIONS[action](reservation, strict=strict_transitions())
    db.session.commit()
    return success_response(enrich_reservations([reservation])[0],
                            message='Reservation status updated' if changed else 'Reservation status unchanged')


@bp.route('/reservations/<int:reservation_id>/payments', methods=['POST'])
def add_reservation_payment(host_id, reservation_id):
    reservation = owned(Reservation, reservation_id, 'Reservation')
    data = json_body()
    check_version(reservation, data.get('version'))
    apply_payment(reservation, build_payment(data), reservation.client)
    db.session.commit()
    logger.info('Payment recorded on reservation %s, balance %s', reservation.id, reservation.solde_du)
    return success_response(reservation.to_dict(), 201)


# ============================================
# DASHBOARD
# ============================================

@bp.route('/dashboard')
def dashboard(host_id):
    orders = Order.query.filter_by(host_id=host_id)
    recent = orders.order_by(Order.date_heure.desc()).limit(3).all()
    return success_response({
        'totalOrders': orders.count(),
        'pendingOrders': orders.filter_by(status=OrderStatus.PENDING.value).count(),
        'totalServices': Service.query.filter_by(host_id=host_id).count(),
        'locationsCount': RoomOrTable.query.filter_by(host_id=host_id).count(),
        'recentOrders': enrich_orders(recent),
    })


# ============================================
# PRODUCTION DISPLAY
# ============================================

@bp.route('/production-display')
def production_display(host_id):
    orders, refreshed_at, skipped = feed_for(host_id).refresh()
    return success_response({
        'orders': orders,
        'refreshedAt': refreshed_at.isoformat() if refreshed_at else None,
        'refreshing': skipped,
        'refreshSeconds': current_app.config['PRODUCTION_REFRESH_SECONDS'],
    })
