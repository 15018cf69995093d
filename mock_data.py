# Hardcoded payloads served when DATA_BACKEND=mock
import time
from datetime import datetime

MOCK_LOGIN_EMAIL = 'admin@orderspot.com'
MOCK_LOGIN_PASSWORD = 'admin123'


def _now():
    return datetime.utcnow().isoformat()


def _mock_id():
    return str(int(time.time() * 1000))


def products(category=None):
    items = [
        {
            'id': '1',
            'name': 'Café Expresso',
            'price': 2.50,
            'category': 'boissons',
            'description': 'Café expresso italien authentique',
            'isActive': True,
            'createdAt': _now(),
        },
        {
            'id': '2',
            'name': 'Croissant',
            'price': 1.80,
            'category': 'viennoiseries',
            'description': 'Croissant artisanal au beurre',
            'isActive': True,
            'createdAt': _now(),
        },
    ]
    if category:
        items = [p for p in items if p['category'] == category]
    return items


def orders(user_id=None, status=None):
    items = [
        {
            'id': '1',
            'orderNumber': 'ORD-001',
            'userId': '1',
            'total': 4.30,
            'status': 'completed',
            'createdAt': _now(),
            'items': [
                {'id': '1', 'productId': '1', 'quantity': 1, 'price': 2.50,
                 'product': {'id': '1', 'name': 'Café Expresso', 'price': 2.50}},
            ],
            'user': {'id': '1', 'email': 'client@example.com', 'name': 'Client Test'},
        }
    ]
    if user_id:
        items = [o for o in items if o['userId'] == str(user_id)]
    if status:
        items = [o for o in items if o['status'] == status]
    return items


def hosts():
    return [
        {
            'hostId': '1',
            'name': 'Restaurant Le Gourmet',
            'email': 'contact@legourmet.com',
            'phone': '+33123456789',
            'address': '123 Rue de la Paix, Paris',
            'isActive': True,
            'createdAt': _now(),
        }
    ]


def users():
    return [
        {
            'id': '1',
            'email': MOCK_LOGIN_EMAIL,
            'name': 'Admin OrderSpot',
            'role': 'admin',
            'createdAt': _now(),
        }
    ]


def clients(host_id=None):
    items = [
        {
            'id': '1',
            'nom': 'Jean Durand',
            'email': 'jean.durand@email.com',
            'telephone': '+33611223344',
            'hostId': '1',
            'type': 'passager',
            'credit': 0,
            'pointsFidelite': 0,
        }
    ]
    if host_id:
        items = [c for c in items if c['hostId'] == str(host_id)]
    return items


def echo(payload, **extra):
    """Mock create: the payload back with a generated id"""
    data = {k: v for k, v in payload.items() if k != 'password'}
    data.update(extra)
    data['id'] = _mock_id()
    data['createdAt'] = _now()
    return data


def login(email, password):
    if email == MOCK_LOGIN_EMAIL and password == MOCK_LOGIN_PASSWORD:
        return users()[0]
    return None
