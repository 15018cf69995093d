# Client-facing API: QR code pages, ordering, online check-in/out, invoices
import logging
import time
from datetime import datetime

from flask import Blueprint, current_app, request

from auth import current_session, current_user, login_required
from billing import client_financial_summary, currency_symbol, format_amount
from enrichment import NameResolver, enrich_orders, enrich_reservations
from errors import AuthenticationError, ConflictError, NotFoundError, ValidationError, success_response
from forms import EMAIL_RE, describe_options, deserialize_answers
from lifecycle import OrderStatus, ReservationStatus, check_out, is_terminal
from models import db, Client, Host, MenuCard, MenuItem, Order, Reservation, RoomOrTable, Service, ServiceCategory, \
    Site, Tag
from placement import check_reservable, check_stay, menu_item_order_fields, price_stay, room_is_free, \
    service_order_fields
from validators import get_or_404, json_body, parse_bool, parse_date, parse_int

logger = logging.getLogger(__name__)

bp = Blueprint('client', __name__, url_prefix='/api')

ALREADY_CHECKED_OUT = 'This reservation is already checked out or cancelled.'


def host_location(host_id, ref_id):
    host = get_or_404(Host, host_id, 'Host')
    location = RoomOrTable.query.get(ref_id)
    if location is None or location.host_id != host.id:
        raise NotFoundError('Location not found')
    return host, location


def public_host(host):
    return {
        'hostId': host.id,
        'name': host.name,
        'currency': host.currency,
        'language': host.language,
        'reservationPageSettings': host.reservation_settings(),
    }


def location_menu_cards(location):
    """The card linked to the location, else the active cards of its site"""
    if location.menu_card_id:
        card = MenuCard.query.get(location.menu_card_id)
        return [card] if card is not None and card.is_active else []
    return (
        MenuCard.query
        .filter_by(host_id=location.host_id, global_site_id=location.global_site_id, is_active=True)
        .order_by(MenuCard.name)
        .all()
    )


def client_record(host_id, session):
    """The caller's client record at a host, matched by user id then email"""
    if not session.is_authenticated:
        return None
    record = Client.query.filter_by(host_id=host_id, user_id=session.user_id).first()
    if record is None and session.email:
        record = Client.query.filter(
            Client.host_id == host_id, db.func.lower(Client.email) == session.email.lower()
        ).first()
    return record


def new_order(host, location, session, data, **fields):
    client = client_record(host.id, session)
    order = Order(
        host_id=host.id,
        location_id=location.id,
        user_id=session.user_id,
        client_id=client.id if client else None,
        client_name=(data.get('clientNom') or '').strip() or session.name or (client.name if client else None),
        status=OrderStatus.PENDING.value,
        montant_paye=0,
        currency=host.currency,
        notes=data.get('notes'),
        **fields,
    )
    db.session.add(order)
    db.session.commit()
    return order


# ============================================
# LOCATION PAGE (QR code target)
# ============================================

@bp.route('/client/<int:host_id>/<int:ref_id>')
def location_page(host_id, ref_id):
    host, location = host_location(host_id, ref_id)
    services = [s for s in Service.query.filter_by(host_id=host.id).order_by(Service.title).all()
                if s.targets(location.id)]
    category_ids = {s.category_id for s in services if s.category_id is not None}
    categories = ServiceCategory.query.filter(ServiceCategory.id.in_(sorted(category_ids))).all() \
        if category_ids else []
    site = location.global_site
    return success_response({
        'host': public_host(host),
        'location': location.to_dict(),
        'site': site.to_dict() if site else None,
        'categories': [c.to_dict() for c in categories],
        'services': [s.to_dict() for s in services],
        'menuCards': [c.to_dict(with_items=True) for c in location_menu_cards(location)],
    })


def offered_service(host, location, service_id):
    service = Service.query.get(service_id)
    if service is None or service.host_id != host.id or not service.targets(location.id):
        raise NotFoundError('Service not found')
    return service


@bp.route('/client/<int:host_id>/<int:ref_id>/service/<int:service_id>')
def service_page(host_id, ref_id, service_id):
    host, location = host_location(host_id, ref_id)
    service = offered_service(host, location, service_id)
    return success_response({
        'service': service.to_dict(),
        'form': service.form.to_dict(with_fields=True) if service.form else None,
        'location': location.to_dict(),
        'host': public_host(host),
    })


@bp.route('/client/<int:host_id>/<int:ref_id>/service/<int:service_id>', methods=['POST'])
def order_service(host_id, ref_id, service_id):
    """Place a service order; form answers are validated against the form"""
    host, location = host_location(host_id, ref_id)
    service = offered_service(host, location, service_id)
    session = current_session()
    if service.login_required and not session.is_authenticated:
        raise AuthenticationError('Please log in to order this service.')

    data = json_body()
    order = new_order(host, location, session, data,
                      **service_order_fields(service, data.get('donneesFormulaire')))
    logger.info('Service order %s placed at %s for host %s', order.id, location.id, host.id)
    return success_response(enrich_orders([order])[0], 201, message='Order placed')


@bp.route('/client/<int:host_id>/<int:ref_id>/menu-items/<int:item_id>', methods=['POST'])
def order_menu_item(host_id, ref_id, item_id):
    host, location = host_location(host_id, ref_id)
    item = MenuItem.query.get(item_id)
    if item is None or item.host_id != host.id:
        raise NotFoundError('Menu item not found')

    data = json_body()
    order = new_order(host, location, current_session(), data, **menu_item_order_fields(item, data))
    logger.info('Menu order %s placed (%s)', order.id, item.name)
    return success_response(enrich_orders([order])[0], 201, message='Order placed')


# ============================================
# ONLINE CHECK-IN / CHECK-OUT
# ============================================

def stay_summary(reservation):
    data = enrich_reservations([reservation])[0]
    host = reservation.host
    symbol = currency_symbol(reservation.currency, host.currency if host else None,
                             current_app.config['DEFAULT_CURRENCY_SYMBOL'])
    data['currencySymbol'] = symbol
    data['formattedTotal'] = format_amount(reservation.prix_total, symbol)
    data['formattedBalance'] = format_amount(reservation.solde_du, symbol)
    return data


@bp.route('/checkin/<int:reservation_id>')
def checkin_page(reservation_id):
    reservation = get_or_404(Reservation, reservation_id, 'Reservation')
    return success_response(stay_summary(reservation))


@bp.route('/checkin/<int:reservation_id>', methods=['POST'])
def submit_checkin(reservation_id):
    """Store the guest's online check-in for the host to review"""
    reservation = get_or_404(Reservation, reservation_id, 'Reservation')
    if is_terminal(reservation.status) or reservation.status == ReservationStatus.CHECKED_IN.value:
        raise ConflictError('Online check-in is closed for this reservation.')

    data = json_body()
    full_name = (data.get('fullName') or '').strip()
    email = (data.get('email') or '').strip()
    errors = {}
    if not full_name:
        errors['fullName'] = 'Full name is required'
    if not email or not EMAIL_RE.match(email):
        errors['email'] = 'A valid email is required'
    if errors:
        raise ValidationError('Check-in validation failed', details=errors)

    checkin = {k: v for k, v in data.items() if k not in ('fullName', 'email')}
    checkin.update({
        'fullName': full_name,
        'email': email.lower(),
        'submissionDate': datetime.utcnow().isoformat(),
    })
    reservation.online_checkin_data = checkin
    reservation.online_checkin_status = 'pending-review'
    db.session.commit()
    logger.info('Online check-in submitted for reservation %s', reservation.id)
    return success_response(stay_summary(reservation), message='Check-in submitted')


@bp.route('/checkout/<int:reservation_id>')
def checkout_page(reservation_id):
    reservation = get_or_404(Reservation, reservation_id, 'Reservation')
    if is_terminal(reservation.status):
        return success_response({'alreadyDone': True, 'status': reservation.status,
                                 'message': ALREADY_CHECKED_OUT})
    data = stay_summary(reservation)
    data['alreadyDone'] = False
    return success_response(data)


@bp.route('/checkout/<int:reservation_id>', methods=['POST'])
def submit_checkout(reservation_id):
    """Guest checkout: any stay that is not closed yet may be checked out"""
    reservation = get_or_404(Reservation, reservation_id, 'Reservation')
    if is_terminal(reservation.status):
        raise ConflictError(ALREADY_CHECKED_OUT)
    data = json_body()
    check_out(
        reservation,
        client=reservation.client,
        host=reservation.host,
        notes=(data.get('notes') or '').strip() or None,
        strict=False,
    )
    db.session.commit()
    return success_response(stay_summary(reservation), message='Check-out complete')


# ============================================
# PUBLIC RESERVATIONS
# ============================================

def site_location(site_id, location_id):
    site = get_or_404(Site, site_id, 'Site')
    location = RoomOrTable.query.get(location_id)
    if location is None or location.global_site_id != site.id:
        raise NotFoundError('Location not found for this site')
    return site, location


def public_location(location, tag_names):
    data = location.to_dict()
    data['tags'] = [tag_names[t] for t in location.tag_ids or [] if t in tag_names]
    return data


def host_tag_names(host_id):
    return {t.id: t.name for t in Tag.query.filter_by(host_id=host_id)}


@bp.route('/reserve/<int:site_id>')
def reservation_search(site_id):
    """Bookable rooms and tables of a site.

    ``persons`` leaves out locations that are too small. With ``arrival`` and
    ``departure``, rooms already taken for those dates are left out too.
    """
    site = get_or_404(Site, site_id, 'Site')
    host = site.host
    arrival = parse_date(request.args.get('arrival'), 'arrival', required=False)
    departure = parse_date(request.args.get('departure'), 'departure', required=False)
    persons = parse_int(request.args.get('persons'), 'persons', minimum=1)

    types = [kind for kind, enabled in (('Chambre', host.enable_room_reservations),
                                        ('Table', host.enable_table_reservations)) if enabled]
    locations = (
        RoomOrTable.query
        .filter(RoomOrTable.global_site_id == site.id, RoomOrTable.type.in_(types))
        .order_by(RoomOrTable.type, RoomOrTable.name)
        .all()
    )
    if persons:
        locations = [loc for loc in locations if loc.capacity is None or loc.capacity >= persons]
    if arrival and departure:
        if departure <= arrival:
            raise ValidationError('departure must be after arrival')
        locations = [loc for loc in locations if loc.type != 'Chambre' or room_is_free(loc, arrival, departure)]

    tag_names = host_tag_names(host.id)
    return success_response({
        'site': site.to_dict(),
        'host': public_host(host),
        'locations': [public_location(loc, tag_names) for loc in locations],
    })


@bp.route('/reserve/<int:site_id>/location/<int:location_id>')
def reservable_location(site_id, location_id):
    site, location = site_location(site_id, location_id)
    return success_response({
        'site': site.to_dict(),
        'host': public_host(site.host),
        'location': public_location(location, host_tag_names(site.host_id)),
    })


@bp.route('/reserve/<int:site_id>/location/<int:location_id>', methods=['POST'])
def book_location(site_id, location_id):
    """Self-service booking, always created as pending for the host to confirm"""
    site, location = site_location(site_id, location_id)
    host = site.host
    check_reservable(host, location)

    data = json_body()
    session = current_session()
    arrivee = parse_date(data.get('dateArrivee'), 'dateArrivee')
    # a table is booked for a single day
    depart = parse_date(data.get('dateDepart'), 'dateDepart') if location.type == 'Chambre' else arrivee
    persons = parse_int(data.get('nombrePersonnes'), 'nombrePersonnes', minimum=1) or 1
    if location.capacity and persons > location.capacity:
        raise ValidationError(f"{location.name} takes at most {location.capacity} persons")

    client = client_record(host.id, session)
    name = ((data.get('clientName') or '').strip() or session.name
            or (client.name if client else None) or f"Invité {int(time.time() * 1000) % 100000:05d}")
    reservation = Reservation(
        host_id=host.id,
        location_id=location.id,
        type=location.type,
        client_id=client.id if client else None,
        client_name=name,
        date_arrivee=arrivee,
        date_depart=depart,
        nombre_personnes=persons,
        animaux_domestiques=parse_bool(data.get('animauxDomestiques')),
        notes=(data.get('notes') or '').strip() or f"Réservation via la page publique pour {location.name}.",
        channel='public',
        status=ReservationStatus.PENDING.value,
        montant_paye=0,
        currency=host.currency,
        online_checkin_status='not-started',
    )
    check_stay(reservation, location)
    price_stay(reservation, location)
    db.session.add(reservation)
    db.session.commit()
    logger.info('Public reservation %s for %s %s', reservation.id, location.type, location.id)
    return success_response(enrich_reservations([reservation])[0], 201, message='Reservation request received')


# ============================================
# INVOICES
# ============================================

@bp.route('/invoice/order/<int:order_id>')
def order_invoice(order_id):
    order = get_or_404(Order, order_id, 'Order')
    data = enrich_orders([order])[0]
    host = order.host
    symbol = currency_symbol(order.currency, host.currency if host else None,
                             current_app.config['DEFAULT_CURRENCY_SYMBOL'])
    menu_item = MenuItem.query.get(order.menu_item_id) if order.menu_item_id else None
    answers = deserialize_answers(order.donnees_formulaire)
    answers.pop('directOrder', None)
    data.update({
        'currencySymbol': symbol,
        'options': describe_options(menu_item, answers),
        'formattedTotal': format_amount(order.prix_total, symbol),
        'formattedPaid': format_amount(order.montant_paye, symbol),
        'formattedBalance': format_amount(order.solde_du, symbol),
    })
    return success_response(data)


@bp.route('/invoice/reservation/<int:reservation_id>')
def reservation_invoice(reservation_id):
    reservation = get_or_404(Reservation, reservation_id, 'Reservation')
    data = stay_summary(reservation)
    data['formattedPaid'] = format_amount(reservation.montant_paye, data['currencySymbol'])
    return success_response(data)


# ============================================
# CLIENT DASHBOARD
# ============================================

def my_client_records(user):
    return Client.query.filter(db.or_(
        Client.user_id == user.id,
        db.func.lower(Client.email) == user.email.lower(),
    )).all()


def my_orders(user, clients):
    matches = [Order.user_id == user.id]
    client_ids = [c.id for c in clients]
    if client_ids:
        matches.append(Order.client_id.in_(client_ids))
    return Order.query.filter(db.or_(*matches)).order_by(Order.date_heure.desc()).all()


def signed_in_user():
    user = current_user()
    if user is None:
        raise AuthenticationError('Unauthorized')
    return user


@bp.route('/client/dashboard')
@login_required
def dashboard():
    """Spending, credit and points of the caller across every host"""
    user = signed_in_user()
    clients = my_client_records(user)
    orders = my_orders(user, clients)
    summary = client_financial_summary(orders, clients)

    resolver = NameResolver()
    host_names = resolver.resolve_names(Host, list(summary.hosts))
    data = summary.to_dict()
    for position in data['hosts']:
        position['hostName'] = host_names.get(position['hostId'])
    data.update({
        'user': user.to_dict(),
        'recentOrders': enrich_orders(orders[:5], resolver),
    })
    return success_response(data)


@bp.route('/client/my-orders')
@login_required
def list_my_orders():
    user = signed_in_user()
    return success_response(enrich_orders(my_orders(user, my_client_records(user))))


@bp.route('/client/my-reservations')
@login_required
def list_my_reservations():
    user = signed_in_user()
    client_ids = [c.id for c in my_client_records(user)]
    if not client_ids:
        return success_response([])
    reservations = (
        Reservation.query
        .filter(Reservation.client_id.in_(client_ids))
        .order_by(Reservation.date_arrivee.desc())
        .all()
    )
    return success_response(enrich_reservations(reservations))
