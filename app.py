"""
OrderSpot - Multi-tenant Hospitality Backend
============================================
Hosts manage locations, services, menus, orders and reservations; clients
order from a location's QR code and follow their stays; admins manage
hosts, sites and users.
"""

import logging
import os
import time
from datetime import datetime

from flask import Flask, current_app, request
from flask_cors import CORS

import mock_data
from auth import create_jwt_token, create_mock_token, current_session, load_session, login_required, roles_required
from billing import order_items_total
from config import Config, DATA_BACKENDS
from errors import (
    AuthenticationError, ConflictError, ValidationError,
    register_error_handlers, require_fields, success_response,
)
from models import db, Client, Host, Order, OrderItem, Product, Site, User, USER_ROLES
from validators import get_or_404, json_body, parse_bool, parse_choice, parse_float, parse_int

logger = logging.getLogger(__name__)

API_NAME = 'OrderSpot Pro API'
API_VERSION = '1.0.0'


def configure_logging(level):
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    root.setLevel(level)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    if app.config['DATA_BACKEND'] not in DATA_BACKENDS:
        raise ValueError(
            f"DATA_BACKEND must be one of {DATA_BACKENDS}, got {app.config['DATA_BACKEND']!r}"
        )

    configure_logging(app.config['LOG_LEVEL'])

    # CORS configuration
    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )

    db.init_app(app)
    app.before_request(load_session)

    @app.teardown_request
    def discard_uncommitted(exc):
        # Pending changes never outlive the request that made them
        db.session.rollback()

    register_error_handlers(app)
    register_routes(app)

    from host_routes import bp as host_bp
    from client_routes import bp as client_bp
    app.register_blueprint(host_bp)
    app.register_blueprint(client_bp)

    # Create tables on startup
    with app.app_context():
        db.create_all()

    logger.info('OrderSpot started (backend=%s)', app.config['DATA_BACKEND'])
    return app


def mock_backend():
    return current_app.config['DATA_BACKEND'] == 'mock'


def api_routes(app):
    routes = []
    for rule in app.url_map.iter_rules():
        if not rule.rule.startswith('/api/'):
            continue
        for method in sorted(rule.methods - {'HEAD', 'OPTIONS'}):
            routes.append(f"{method} {rule.rule}")
    return sorted(routes, key=lambda r: (r.split(' ', 1)[1], r))


def register_routes(app):

    # ============================================
    # HEALTH / STATUS
    # ============================================

    @app.route('/health')
    def health_check():
        """Health check endpoint"""
        return success_response({'status': 'healthy', 'timestamp': datetime.utcnow().isoformat()})

    @app.route('/')
    def index():
        """Root endpoint"""
        return success_response({'message': API_NAME, 'status': 'running'})

    @app.route('/api/status')
    def api_status():
        """Health payload listing the available routes"""
        return success_response({
            'status': 'healthy',
            'timestamp': datetime.utcnow().isoformat(),
            'api': API_NAME,
            'version': API_VERSION,
            'backend': current_app.config['DATA_BACKEND'],
            'routes': api_routes(current_app),
        })

    # ============================================
    # AUTHENTICATION
    # ============================================

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        """Login with email and password - returns a JWT token"""
        data = json_body()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password') or ''
        require_fields({'email': email, 'password': password}, 'email', 'password',
                       message='Email and password are required')

        if mock_backend():
            user = mock_data.login(email, password)
            if not user:
                raise AuthenticationError('Invalid credentials')
            data = dict(user, token=create_mock_token(user))
            return success_response(data, message='Login successful (mock mode)')

        user = User.query.filter(db.func.lower(User.email) == email).first()
        if not user or not user.check_password(password):
            raise AuthenticationError('Invalid credentials')

        logger.info('User %s logged in', user.id)
        data = user.to_dict()
        data['token'] = create_jwt_token(user)
        return success_response(data, message='Login successful')

    @app.route('/api/auth/me')
    @login_required
    def me():
        return success_response(current_session().to_dict())

    # ============================================
    # USERS
    # ============================================

    @app.route('/api/users')
    def list_users():
        """List users - password hashes are never returned"""
        if mock_backend():
            return success_response(mock_data.users())
        users = User.query.order_by(User.created_at.desc()).all()
        return success_response([u.to_dict() for u in users])

    @app.route('/api/users', methods=['POST'])
    def create_user():
        data = json_body()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password') or ''
        require_fields({'email': email, 'password': password}, 'email', 'password',
                       message='Email and password are required')
        if len(password) < 6:
            raise ValidationError('Password must be at least 6 characters long')
        role = parse_choice(data.get('role'), 'role', USER_ROLES, default='client')

        if mock_backend():
            return success_response(mock_data.echo(data, email=email, role=role), 201,
                                    message='User created successfully (mock mode)')

        host_id = _validated_user_host(role, data.get('hostId'))

        if User.query.filter(db.func.lower(User.email) == email).first():
            raise ConflictError('User with this email already exists')

        user = User(email=email, name=(data.get('name') or '').strip(), role=role, host_id=host_id)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        logger.info('User %s created (role=%s)', user.id, role)
        return success_response(user.to_dict(), 201, message='User created successfully')

    @app.route('/api/users/<int:user_id>', methods=['PUT'])
    @roles_required('admin')
    def update_user(user_id):
        user = get_or_404(User, user_id, 'User')
        data = json_body()

        if 'name' in data:
            user.name = (data['name'] or '').strip()
        if 'email' in data:
            email = (data['email'] or '').strip().lower()
            require_fields({'email': email}, 'email')
            clash = User.query.filter(db.func.lower(User.email) == email, User.id != user.id).first()
            if clash:
                raise ConflictError('User with this email already exists')
            user.email = email
        if 'role' in data or 'hostId' in data:
            role = parse_choice(data.get('role', user.role), 'role', USER_ROLES)
            user.host_id = _validated_user_host(role, data.get('hostId', user.host_id))
            user.role = role
        if data.get('password'):
            if len(data['password']) < 6:
                raise ValidationError('Password must be at least 6 characters long')
            user.set_password(data['password'])

        db.session.commit()
        return success_response(user.to_dict())

    @app.route('/api/users/<int:user_id>', methods=['DELETE'])
    @roles_required('admin')
    def delete_user(user_id):
        user = get_or_404(User, user_id, 'User')
        if user.id == current_session().user_id:
            raise ValidationError('You cannot delete your own account')
        db.session.delete(user)
        db.session.commit()
        logger.info('User %s deleted', user_id)
        return success_response(message='User deleted')

    # ============================================
    # HOSTS
    # ============================================

    @app.route('/api/hosts')
    def list_hosts():
        if mock_backend():
            return success_response(mock_data.hosts())
        hosts = Host.query.order_by(Host.name).all()
        return success_response([h.to_dict() for h in hosts])

    @app.route('/api/hosts', methods=['POST'])
    def create_host():
        """Create a host - an existing email only refreshes the name"""
        data = json_body()
        name = (data.get('name') or '').strip()
        email = (data.get('email') or '').strip().lower()
        require_fields({'name': name, 'email': email}, 'name', 'email',
                       message='Name and email are required')

        if mock_backend():
            return success_response(mock_data.echo(data, isActive=True), 201)

        existing = Host.query.filter(db.func.lower(Host.email) == email).first()
        if existing:
            if existing.name != name:
                existing.name = name
                for user in existing.users:
                    user.name = name
                db.session.commit()
            return success_response(existing.to_dict(), message='Host already exists; name updated')

        password = data.get('password')
        if password and len(password) < 6:
            raise ValidationError('Password must be at least 6 characters long')

        host = Host(
            name=name,
            email=email,
            phone=data.get('phone', ''),
            address=data.get('address', ''),
            currency=data.get('currency'),
            language=data.get('language', 'fr'),
        )
        db.session.add(host)
        db.session.flush()

        if password:
            user = User.query.filter(db.func.lower(User.email) == email).first()
            if user is None:
                user = User(email=email, name=name)
                user.set_password(password)
                db.session.add(user)
            user.role = 'host'
            user.host_id = host.id

        db.session.commit()
        logger.info('Host %s created', host.id)
        return success_response(host.to_dict(), 201)

    @app.route('/api/hosts/<int:host_id>')
    @roles_required('admin', 'host')
    def get_host(host_id):
        return success_response(get_or_404(Host, host_id, 'Host').to_dict())

    @app.route('/api/hosts/<int:host_id>', methods=['PUT'])
    @roles_required('admin', 'host')
    def update_host(host_id):
        host = get_or_404(Host, host_id, 'Host')
        data = json_body()
        old_email = host.email

        if 'name' in data:
            host.name = (data['name'] or '').strip() or host.name
        if 'email' in data:
            email = (data['email'] or '').strip().lower()
            require_fields({'email': email}, 'email')
            clash = Host.query.filter(db.func.lower(Host.email) == email, Host.id != host.id).first()
            if clash:
                raise ConflictError('Host with this email already exists')
            host.email = email
        for key, attr in (('phone', 'phone'), ('address', 'address'),
                          ('currency', 'currency'), ('language', 'language')):
            if key in data:
                setattr(host, attr, data[key])
        if 'isActive' in data:
            host.is_active = parse_bool(data['isActive'])

        # Keep the host's own login in step with its identity
        for user in host.users:
            if user.email.lower() == old_email.lower():
                user.email = host.email
                user.name = host.name

        db.session.commit()
        return success_response(host.to_dict())

    @app.route('/api/hosts/<int:host_id>', methods=['DELETE'])
    @roles_required('admin')
    def delete_host(host_id):
        """Delete a host together with everything it owns"""
        host = get_or_404(Host, host_id, 'Host')
        removed = {
            'sites': len(host.sites),
            'locations': len(host.locations),
            'services': len(host.services),
            'users': len(host.users),
            'orders': len(host.orders),
            'reservations': len(host.reservations),
            'clients': len(host.clients),
        }
        db.session.delete(host)
        db.session.commit()
        logger.info('Host %s deleted with dependents %s', host_id, removed)
        return success_response(removed, message='Host and dependent records deleted')

    @app.route('/api/hosts/<int:host_id>/reservation-settings')
    def get_reservation_settings(host_id):
        return success_response(get_or_404(Host, host_id, 'Host').reservation_settings())

    @app.route('/api/hosts/<int:host_id>/reservation-settings', methods=['PUT'])
    @roles_required('admin', 'host')
    def update_reservation_settings(host_id):
        host = get_or_404(Host, host_id, 'Host')
        data = json_body()
        rooms = parse_bool(data.get('enableRoomReservations'), host.enable_room_reservations)
        tables = parse_bool(data.get('enableTableReservations'), host.enable_table_reservations)
        if not rooms and not tables:
            raise ValidationError('You cannot disable both room and table reservations.')

        host.enable_room_reservations = rooms
        host.enable_table_reservations = tables
        if 'heroImageUrl' in data:
            host.hero_image_url = data['heroImageUrl'] or None
        db.session.commit()
        return success_response(host.reservation_settings(), message='Reservation page settings saved')

    @app.route('/api/hosts/<int:host_id>/loyalty-settings', methods=['PUT'])
    @roles_required('admin', 'host')
    def update_loyalty_settings(host_id):
        host = get_or_404(Host, host_id, 'Host')
        data = json_body()
        host.loyalty_enabled = parse_bool(data.get('enabled'), host.loyalty_enabled)
        for key, attr in (('pointsPerEuroSpent', 'points_per_euro_spent'),
                          ('pointsPerNightRoom', 'points_per_night_room'),
                          ('pointsPerTableBooking', 'points_per_table_booking')):
            if key in data:
                setattr(host, attr, parse_float(data[key], key, required=True, minimum=0))
        db.session.commit()
        return success_response(host.loyalty_settings())

    # ============================================
    # SITES (admin)
    # ============================================

    @app.route('/api/sites')
    @roles_required('admin', 'host')
    def list_sites():
        query = Site.query
        host_id = request.args.get('hostId', type=int)
        if host_id:
            query = query.filter_by(host_id=host_id)
        return success_response([s.to_dict() for s in query.order_by(Site.name).all()])

    @app.route('/api/sites', methods=['POST'])
    @roles_required('admin')
    def create_site():
        data = json_body()
        name = (data.get('name') or '').strip()
        require_fields({'name': name}, 'name')
        site = Site(
            name=name,
            host_id=_existing_host_id(data.get('hostId')),
            logo_url=data.get('logoUrl'),
            primary_color=data.get('primaryColor'),
        )
        db.session.add(site)
        db.session.commit()
        logger.info('Site %s created for host %s', site.id, site.host_id)
        return success_response(site.to_dict(), 201)

    @app.route('/api/sites/<int:site_id>', methods=['PUT'])
    @roles_required('admin')
    def update_site(site_id):
        site = get_or_404(Site, site_id, 'Site')
        data = json_body()
        if 'name' in data:
            site.name = (data['name'] or '').strip() or site.name
        if 'hostId' in data:
            site.host_id = _existing_host_id(data['hostId'])
        for key, attr in (('logoUrl', 'logo_url'), ('primaryColor', 'primary_color')):
            if key in data:
                setattr(site, attr, data[key])
        db.session.commit()
        return success_response(site.to_dict())

    @app.route('/api/sites/<int:site_id>', methods=['DELETE'])
    @roles_required('admin')
    def delete_site(site_id):
        """Delete a site and the locations inside it"""
        site = get_or_404(Site, site_id, 'Site')
        db.session.delete(site)
        db.session.commit()
        logger.info('Site %s deleted', site_id)
        return success_response(message='Site deleted')

    # ============================================
    # PRODUCTS
    # ============================================

    @app.route('/api/products')
    def list_products():
        category = request.args.get('category')
        if mock_backend():
            return success_response(mock_data.products(category))
        query = Product.query
        if category:
            query = query.filter_by(category=category)
        return success_response([p.to_dict() for p in query.order_by(Product.created_at.desc()).all()])

    @app.route('/api/products', methods=['POST'])
    def create_product():
        data = json_body()
        if not data.get('name') or data.get('price') in (None, '') or not data.get('category'):
            raise ValidationError('Name, price, and category are required')
        price = parse_float(data['price'], 'price', minimum=0)

        if mock_backend():
            return success_response(mock_data.echo(data, price=price, isActive=data.get('isActive', True)), 201)

        product = Product(
            name=data['name'],
            description=data.get('description', ''),
            price=price,
            category=data['category'],
            image_url=data.get('imageUrl'),
            is_active=parse_bool(data.get('isActive'), True),
        )
        db.session.add(product)
        db.session.commit()
        return success_response(product.to_dict(), 201)

    # ============================================
    # ORDERS (product orders)
    # ============================================

    @app.route('/api/orders')
    def list_orders():
        user_id = request.args.get('userId')
        status = request.args.get('status')
        if mock_backend():
            return success_response(mock_data.orders(user_id, status))
        query = Order.query
        if user_id:
            query = query.filter(Order.user_id == parse_int(user_id, 'userId'))
        if status:
            query = query.filter(Order.status == status)
        orders = query.order_by(Order.date_heure.desc()).all()
        return success_response([_product_order_dict(o) for o in orders])

    @app.route('/api/orders', methods=['POST'])
    def create_order():
        """Create an order from product lines; the total is computed here"""
        data = json_body()
        user_id = data.get('userId')
        items = data.get('items')
        if not user_id or not isinstance(items, list) or not items:
            raise ValidationError('userId and items are required')

        total = order_items_total(items)

        if mock_backend():
            return success_response(mock_data.echo(
                {'userId': user_id, 'items': items},
                orderNumber=f"ORD-{int(time.time() * 1000)}", total=total, status='pending',
            ), 201)

        user = get_or_404(User, parse_int(user_id, 'userId'), 'User')
        order = Order(
            order_number=f"ORD-{int(time.time() * 1000)}",
            user_id=user.id,
            client_name=user.name or None,
            prix_total=total,
            montant_paye=0,
            status='pending',
            notes=data.get('notes'),
        )
        for item in items:
            product_id = item.get('productId')
            product = Product.query.get(product_id) if product_id is not None else None
            order.items.append(OrderItem(
                product_id=product.id if product else None,
                quantity=int(float(item['quantity'])),
                price=float(item['price']),
            ))
        db.session.add(order)
        db.session.commit()
        logger.info('Order %s created for user %s (total %.2f)', order.id, user.id, total)
        return success_response(_product_order_dict(order), 201)

    # ============================================
    # CLIENTS
    # ============================================

    @app.route('/api/clients')
    def list_clients():
        host_id = request.args.get('hostId')
        if mock_backend():
            return success_response(mock_data.clients(host_id))
        query = Client.query
        if host_id:
            query = query.filter(Client.host_id == parse_int(host_id, 'hostId'))
        return success_response([c.to_dict() for c in query.order_by(Client.created_at.desc()).all()])

    @app.route('/api/clients', methods=['POST'])
    def create_client():
        data = json_body()
        if not data.get('name') or not data.get('email') or not data.get('hostId'):
            raise ValidationError('Name, email, and hostId are required')

        if mock_backend():
            return success_response(mock_data.echo(data), 201)

        client = Client(
            name=data['name'],
            email=data['email'].strip().lower(),
            telephone=data.get('phone'),
            host_id=_existing_host_id(data['hostId']),
        )
        db.session.add(client)
        db.session.commit()
        return success_response(client.to_dict(), 201)


def _existing_host_id(host_id):
    if host_id in (None, ''):
        raise ValidationError('Missing field: hostId')
    host = Host.query.get(parse_int(host_id, 'hostId'))
    if host is None:
        raise ValidationError('hostId must reference an existing host')
    return host.id


def _validated_user_host(role, host_id):
    """Host users must point at a host as soon as one exists"""
    if role != 'host':
        return None
    if host_id in (None, ''):
        if Host.query.count() > 0:
            raise ValidationError('A host user must be linked to a host')
        return None
    return _existing_host_id(host_id)


def _product_order_dict(order):
    data = order.to_dict()
    data['total'] = order.prix_total
    return data


# Create the real app object
app = create_app()


# ============================================
# MAIN ENTRY POINT
# ============================================

if __name__ == '__main__':
    debug_mode = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', 5000))

    logger.info('Running on http://%s:%s (debug=%s)', host, port, debug_mode)
    app.run(debug=debug_mode, host=host, port=port)
