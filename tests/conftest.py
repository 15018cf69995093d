"""
Shared fixtures: an app on in-memory SQLite with a fresh schema per test,
a seeded host with one room and one table, and one user per role.
"""

import os
import sys

import pytest

# --- Make sure project root is importable ---
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app import create_app  # noqa: E402
from config import TestingConfig  # noqa: E402
from models import db, Host, RoomOrTable, Site, User  # noqa: E402
from production import reset_feeds  # noqa: E402

PASSWORD = 'secret123'
ADMIN_EMAIL = 'admin@orderspot.test'
HOST_EMAIL = 'contact@hotel-du-lac.test'
GUEST_EMAIL = 'marie@example.test'


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
        reset_feeds()
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def host(app):
    host = Host(
        name='Hôtel du Lac',
        email=HOST_EMAIL,
        currency='€',
        loyalty_enabled=True,
        points_per_euro_spent=1,
        points_per_night_room=10,
        points_per_table_booking=5,
    )
    db.session.add(host)
    db.session.commit()
    return host


@pytest.fixture
def site(host):
    site = Site(host_id=host.id, name='Bâtiment principal')
    db.session.add(site)
    db.session.commit()
    return site


@pytest.fixture
def room(host, site):
    room = RoomOrTable(host_id=host.id, global_site_id=site.id, name='101', type='Chambre',
                       capacity=2, prix_par_nuit=80, tag_ids=[])
    db.session.add(room)
    db.session.commit()
    return room


@pytest.fixture
def table(host, site):
    table = RoomOrTable(host_id=host.id, global_site_id=site.id, name='5', type='Table',
                        capacity=4, prix_fixe_reservation=15, tag_ids=[])
    db.session.add(table)
    db.session.commit()
    return table


def make_user(email, role, host_id=None, name=''):
    user = User(email=email, role=role, host_id=host_id, name=name)
    user.set_password(PASSWORD)
    db.session.add(user)
    return user


@pytest.fixture
def users(host):
    seeded = {
        'admin': make_user(ADMIN_EMAIL, 'admin', name='Admin'),
        'host': make_user(HOST_EMAIL, 'host', host_id=host.id, name='Hôtel du Lac'),
        'guest': make_user(GUEST_EMAIL, 'client', name='Marie Curie'),
    }
    db.session.commit()
    return seeded


def login(client, email, password=PASSWORD):
    resp = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['data']['token']}"}


@pytest.fixture
def admin_headers(client, users):
    return login(client, ADMIN_EMAIL)


@pytest.fixture
def host_headers(client, users):
    return login(client, HOST_EMAIL)


@pytest.fixture
def guest_headers(client, users):
    return login(client, GUEST_EMAIL)
