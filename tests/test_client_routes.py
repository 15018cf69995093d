import json
from datetime import date

import pytest

from conftest import GUEST_EMAIL
from models import db, Client, CustomForm, FormField, MenuCard, MenuCategory, MenuItem, Order, Reservation, Service, \
    Site


@pytest.fixture
def breakfast(host, room):
    form = CustomForm(host_id=host.id, name='Petit déjeuner')
    form.fields.append(FormField(label='Allergies', type='textarea', order=0))
    form.fields.append(FormField(label='Personnes', type='number', required=True, order=1))
    db.session.add(form)
    db.session.flush()
    service = Service(host_id=host.id, title='Petit déjeuner en chambre', price=18, form_id=form.id,
                      target_location_ids=[room.id])
    db.session.add(service)
    db.session.commit()
    return service


@pytest.fixture
def burger(host, site):
    card = MenuCard(host_id=host.id, global_site_id=site.id, name='Room service')
    category = MenuCategory(name='Plats')
    item = MenuItem(name='Burger', price=14, stock=3, is_configurable=True, option_groups=[
        {'id': 'cuisson', 'name': 'Cuisson', 'selectionType': 'single', 'isRequired': True, 'options': [
            {'id': 'rare', 'name': 'Saignant', 'priceAdjustment': 0},
            {'id': 'well', 'name': 'Bien cuit', 'priceAdjustment': 0}]},
        {'id': 'extras', 'name': 'Suppléments', 'selectionType': 'multiple', 'isRequired': False, 'options': [
            {'id': 'cheese', 'name': 'Fromage', 'priceAdjustment': 1.5}]},
    ])
    category.items.append(item)
    card.categories.append(category)
    db.session.add(card)
    db.session.commit()
    return item


def _field_ids(service):
    return [f.key for f in service.form.fields]


class TestLocationPage:

    def test_lists_services_targeting_the_location(self, client, host, room, table, breakfast, burger):
        db.session.add(Service(host_id=host.id, title='Ménage', target_location_ids=[]))
        db.session.commit()

        data = client.get(f'/api/client/{host.id}/{room.id}').get_json()['data']
        assert data['host']['name'] == 'Hôtel du Lac'
        assert data['location']['type'] == 'Chambre'
        assert sorted(s['titre'] for s in data['services']) == ['Ménage', 'Petit déjeuner en chambre']
        assert data['menuCards'][0]['categories'][0]['items'][0]['name'] == 'Burger'

        data = client.get(f'/api/client/{host.id}/{table.id}').get_json()['data']
        assert [s['titre'] for s in data['services']] == ['Ménage']

    def test_location_of_another_host(self, client, host, room):
        r = client.get(f'/api/client/999/{room.id}')
        assert r.status_code == 404
        r = client.get(f'/api/client/{host.id}/999')
        assert r.status_code == 404
        assert r.get_json()['error'] == 'Location not found'

    def test_service_page_has_ordered_fields(self, client, host, room, breakfast):
        data = client.get(f'/api/client/{host.id}/{room.id}/service/{breakfast.id}').get_json()['data']
        assert [f['label'] for f in data['form']['fields']] == ['Allergies', 'Personnes']


class TestServiceOrders:

    def test_login_required_services(self, client, host, room, breakfast):
        breakfast.login_required = True
        db.session.commit()
        r = client.post(f'/api/client/{host.id}/{room.id}/service/{breakfast.id}', json={})
        assert r.status_code == 401
        assert r.get_json()['error'] == 'Please log in to order this service.'

    def test_answers_are_validated(self, client, host, room, breakfast):
        allergies, people = _field_ids(breakfast)
        r = client.post(f'/api/client/{host.id}/{room.id}/service/{breakfast.id}',
                        json={'donneesFormulaire': {allergies: 'arachides', people: '-2'}})
        assert r.status_code == 400
        assert people in r.get_json()['details']
        assert Order.query.count() == 0

    def test_answers_are_stored(self, client, host, room, breakfast, users, guest_headers):
        allergies, people = _field_ids(breakfast)
        guest = Client(host_id=host.id, name='Marie Curie', email=GUEST_EMAIL)
        db.session.add(guest)
        db.session.commit()

        r = client.post(f'/api/client/{host.id}/{room.id}/service/{breakfast.id}', headers=guest_headers,
                        json={'donneesFormulaire': {allergies: 'arachides', people: '2'}})
        assert r.status_code == 201
        data = r.get_json()['data']
        assert data['prixTotal'] == 18
        assert data['status'] == 'pending'
        assert data['clientId'] == guest.id
        assert data['clientDisplayName'] == 'Marie Curie'
        assert json.loads(data['donneesFormulaire']) == {allergies: 'arachides', people: '2'}

    def test_service_without_form_is_a_direct_order(self, client, host, room):
        service = Service(host_id=host.id, title='Taxi', target_location_ids=[])
        db.session.add(service)
        db.session.commit()
        r = client.post(f'/api/client/{host.id}/{room.id}/service/{service.id}', json={'clientNom': 'Chambre 101'})
        assert r.status_code == 201
        assert json.loads(r.get_json()['data']['donneesFormulaire']) == {'directOrder': True}

    def test_service_not_offered_here(self, client, host, table, breakfast):
        r = client.post(f'/api/client/{host.id}/{table.id}/service/{breakfast.id}', json={})
        assert r.status_code == 404


class TestMenuOrders:

    def test_price_includes_options_and_quantity(self, client, host, room, burger):
        r = client.post(f'/api/client/{host.id}/{room.id}/menu-items/{burger.id}', json={
            'quantity': 2, 'selectedOptions': {'cuisson': 'rare', 'extras': ['cheese']},
        })
        assert r.status_code == 201
        data = r.get_json()['data']
        assert data['prixTotal'] == 31
        assert data['itemType'] == 'food_beverage'
        assert db.session.get(MenuItem, burger.id).stock == 1

    def test_required_option_missing(self, client, host, room, burger):
        r = client.post(f'/api/client/{host.id}/{room.id}/menu-items/{burger.id}', json={'selectedOptions': {}})
        assert r.status_code == 400
        assert db.session.get(MenuItem, burger.id).stock == 3

    def test_out_of_stock(self, client, host, room, burger):
        r = client.post(f'/api/client/{host.id}/{room.id}/menu-items/{burger.id}',
                        json={'quantity': 4, 'selectedOptions': {'cuisson': 'well'}})
        assert r.status_code == 400

    def test_confirmed_menu_orders_reach_the_production_display(self, client, host, room, burger, host_headers):
        r = client.post(f'/api/client/{host.id}/{room.id}/menu-items/{burger.id}',
                        json={'selectedOptions': {'cuisson': 'well', 'extras': ['cheese']}})
        order_id = r.get_json()['data']['id']
        client.patch(f'/api/hosts/{host.id}/orders/{order_id}/status', headers=host_headers,
                     json={'status': 'confirmed'})

        tickets = client.get(f'/api/hosts/{host.id}/production-display',
                             headers=host_headers).get_json()['data']['orders']
        assert [t['itemName'] for t in tickets] == ['Burger']
        assert tickets[0]['options'] == [
            {'group': 'Cuisson', 'options': ['Bien cuit'], 'priceAdjustment': 0},
            {'group': 'Suppléments', 'options': ['Fromage'], 'priceAdjustment': 1.5},
        ]


@pytest.fixture
def stay(host, room):
    guest = Client(host_id=host.id, name='Ada Lovelace', points_fidelite=0)
    db.session.add(guest)
    db.session.flush()
    reservation = Reservation(host_id=host.id, location_id=room.id, type='Chambre', client_id=guest.id,
                              client_name='Ada Lovelace', date_arrivee=date(2025, 7, 1),
                              date_depart=date(2025, 7, 3), status='confirmed', prix_total=160,
                              montant_paye=60, online_checkin_status='not-started')
    db.session.add(reservation)
    db.session.commit()
    return reservation


class TestOnlineCheckin:

    def test_requires_name_and_valid_email(self, client, stay):
        r = client.post(f'/api/checkin/{stay.id}', json={'fullName': '', 'email': 'ada@'})
        assert r.status_code == 400
        assert set(r.get_json()['details']) == {'fullName', 'email'}

    def test_submission_waits_for_review(self, client, stay):
        r = client.post(f'/api/checkin/{stay.id}', json={
            'fullName': 'Ada Lovelace', 'email': 'Ada@Example.test', 'nationality': 'GB'})
        assert r.status_code == 200
        data = r.get_json()['data']
        assert data['onlineCheckinStatus'] == 'pending-review'
        assert data['onlineCheckinData']['email'] == 'ada@example.test'
        assert data['onlineCheckinData']['nationality'] == 'GB'
        assert 'submissionDate' in data['onlineCheckinData']

    def test_unknown_reservation(self, client, app):
        assert client.get('/api/checkin/999').status_code == 404


class TestOnlineCheckout:

    def test_checkout_once(self, client, host, stay):
        reservation_id, client_id = stay.id, stay.client_id
        stay.status = 'checked-in'
        db.session.commit()

        page = client.get(f'/api/checkout/{reservation_id}').get_json()['data']
        assert page['alreadyDone'] is False
        assert page['formattedBalance'] == '€100.00'

        r = client.post(f'/api/checkout/{reservation_id}', json={'notes': 'Séjour parfait'})
        assert r.status_code == 200
        assert r.get_json()['data']['status'] == 'checked-out'
        assert db.session.get(Client, client_id).points_fidelite == 180

        page = client.get(f'/api/checkout/{reservation_id}').get_json()['data']
        assert page['alreadyDone'] is True

        r = client.post(f'/api/checkout/{reservation_id}', json={})
        assert r.status_code == 409
        assert r.get_json()['error'] == 'This reservation is already checked out or cancelled.'
        assert db.session.get(Client, client_id).points_fidelite == 180

    def test_confirmed_stay_can_check_out_directly(self, client, host, stay):
        reservation_id, client_id = stay.id, stay.client_id

        assert client.get(f'/api/checkout/{reservation_id}').get_json()['data']['alreadyDone'] is False
        r = client.post(f'/api/checkout/{reservation_id}', json={})
        assert r.status_code == 200
        data = r.get_json()['data']
        assert data['status'] == 'checked-out'
        assert data['pointsGagnes'] == 180
        assert db.session.get(Client, client_id).points_fidelite == 180

    def test_cancelled_stay_is_already_done(self, client, stay):
        stay.status = 'cancelled'
        db.session.commit()
        assert client.get(f'/api/checkout/{stay.id}').get_json()['data']['alreadyDone'] is True
        assert client.post(f'/api/checkout/{stay.id}', json={}).status_code == 409


class TestPublicReservations:

    def test_search_lists_bookable_locations(self, client, host, site, room, table):
        data = client.get(f'/api/reserve/{site.id}').get_json()['data']
        assert data['site']['name'] == 'Bâtiment principal'
        assert [l['name'] for l in data['locations']] == ['101', '5']

        host.enable_table_reservations = False
        db.session.commit()
        data = client.get(f'/api/reserve/{site.id}?persons=3').get_json()['data']
        assert data['locations'] == []

    def test_search_hides_taken_rooms(self, client, site, room, table, stay):
        url = f'/api/reserve/{site.id}?arrival=2025-07-02&departure=2025-07-04'
        assert [l['name'] for l in client.get(url).get_json()['data']['locations']] == ['5']
        url = f'/api/reserve/{site.id}?arrival=2025-07-03&departure=2025-07-04'
        assert [l['name'] for l in client.get(url).get_json()['data']['locations']] == ['101', '5']

    def test_location_must_belong_to_the_site(self, client, host, site, room):
        other = Site(host_id=host.id, name='Annexe')
        db.session.add(other)
        db.session.commit()
        assert client.get(f'/api/reserve/{site.id}/location/{room.id}').status_code == 200
        r = client.get(f'/api/reserve/{other.id}/location/{room.id}')
        assert r.status_code == 404
        r = client.post(f'/api/reserve/{other.id}/location/{room.id}', json={'dateArrivee': '2025-08-01',
                                                                            'dateDepart': '2025-08-03'})
        assert r.status_code == 404

    def test_room_needs_a_departure_date(self, client, site, room):
        r = client.post(f'/api/reserve/{site.id}/location/{room.id}', json={'dateArrivee': '2025-08-01'})
        assert r.status_code == 400
        assert r.get_json()['error'] == 'Missing field: dateDepart'
        assert Reservation.query.count() == 0

    def test_guest_booking_is_pending(self, client, site, room):
        r = client.post(f'/api/reserve/{site.id}/location/{room.id}', json={
            'dateArrivee': '2025-08-01', 'dateDepart': '2025-08-03', 'nombrePersonnes': 2,
            'status': 'checked-out'})
        assert r.status_code == 201
        data = r.get_json()['data']
        assert data['status'] == 'pending'
        assert data['prixTotal'] == 160
        assert data['clientName'].startswith('Invité ')
        assert data['notes'] == 'Réservation via la page publique pour 101.'

        r = client.post(f'/api/reserve/{site.id}/location/{room.id}', json={
            'dateArrivee': '2025-08-02', 'dateDepart': '2025-08-04'})
        assert r.status_code == 409

    def test_signed_in_booking_uses_the_client_record(self, client, host, site, table, users, guest_headers):
        record = Client(host_id=host.id, name='Marie Curie', email=GUEST_EMAIL)
        db.session.add(record)
        db.session.commit()
        r = client.post(f'/api/reserve/{site.id}/location/{table.id}', headers=guest_headers,
                        json={'dateArrivee': '2025-08-01', 'dateDepart': '2025-08-09'})
        assert r.status_code == 201
        data = r.get_json()['data']
        assert data['clientName'] == 'Marie Curie'
        assert data['clientId'] == record.id
        assert data['dateDepart'] == '2025-08-01'
        assert data['prixTotal'] == 15

    def test_too_many_persons(self, client, site, room):
        r = client.post(f'/api/reserve/{site.id}/location/{room.id}', json={
            'dateArrivee': '2025-08-01', 'dateDepart': '2025-08-03', 'nombrePersonnes': 3})
        assert r.status_code == 400


class TestInvoices:

    def test_order_invoice(self, client, host, room, burger):
        order = Order(host_id=host.id, menu_item_id=burger.id, location_id=room.id, status='completed',
                      prix_total=15.5, montant_paye=10, currency='€',
                      donnees_formulaire=json.dumps({'cuisson': 'rare', 'extras': ['cheese']}))
        db.session.add(order)
        db.session.commit()

        data = client.get(f'/api/invoice/order/{order.id}').get_json()['data']
        assert data['formattedTotal'] == '€15.50'
        assert data['formattedBalance'] == '€5.50'
        assert data['options'][1] == {'group': 'Suppléments', 'options': ['Fromage'], 'priceAdjustment': 1.5}
        assert data['locationName'] == 'Chambre 101'

    def test_missing_total_shows_na(self, client, host):
        order = Order(host_id=host.id, status='pending')
        db.session.add(order)
        db.session.commit()
        data = client.get(f'/api/invoice/order/{order.id}').get_json()['data']
        assert data['formattedBalance'] == 'N/A'
        assert data['currencySymbol'] == '€'

    def test_reservation_invoice(self, client, stay):
        data = client.get(f'/api/invoice/reservation/{stay.id}').get_json()['data']
        assert data['formattedTotal'] == '€160.00'
        assert data['formattedPaid'] == '€60.00'
        assert data['formattedBalance'] == '€100.00'


class TestClientDashboard:

    def test_requires_login(self, client):
        assert client.get('/api/client/dashboard').status_code == 401

    def test_summary_across_hosts(self, client, host, room, users, guest_headers):
        guest_id = users['guest'].id
        record = Client(host_id=host.id, name='Marie Curie', email=GUEST_EMAIL, credit=30, points_fidelite=12)
        db.session.add(record)
        db.session.flush()
        db.session.add_all([
            Order(host_id=host.id, user_id=guest_id, status='completed', prix_total=50),
            Order(host_id=host.id, client_id=record.id, status='confirmed', prix_total=20),
            Order(host_id=host.id, user_id=guest_id, status='cancelled', prix_total=99),
        ])
        db.session.add(Reservation(host_id=host.id, location_id=room.id, type='Chambre', client_id=record.id,
                                   client_name='Marie Curie', date_arrivee=date(2025, 9, 1),
                                   date_depart=date(2025, 9, 2)))
        db.session.commit()

        data = client.get('/api/client/dashboard', headers=guest_headers).get_json()['data']
        assert data['totalCredit'] == 30
        assert data['totalLoyaltyPoints'] == 12
        assert data['hosts'] == [{
            'hostId': host.id, 'hostName': 'Hôtel du Lac', 'totalSpentAtHost': 70, 'credit': 30,
            'pointsFidelite': 12, 'netDue': 40,
        }]
        assert len(data['recentOrders']) == 3

        assert len(client.get('/api/client/my-orders', headers=guest_headers).get_json()['data']) == 3
        reservations = client.get('/api/client/my-reservations', headers=guest_headers).get_json()['data']
        assert [r['locationName'] for r in reservations] == ['101']
