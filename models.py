# Database Models for OrderSpot
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash

from billing import record_balance
from errors import ConflictError

db = SQLAlchemy()

Money = db.Numeric(10, 2, asdecimal=False)

USER_ROLES = ('admin', 'host', 'client')
LOCATION_TYPES = ('Chambre', 'Table', 'Site')
CLIENT_TYPES = ('heberge', 'passager')
PAYMENT_TYPES = ('credit', 'cash', 'card', 'points')
FORM_FIELD_TYPES = ('text', 'textarea', 'number', 'date', 'time', 'email', 'tel')
ONLINE_CHECKIN_STATUSES = ('not-started', 'pending-review', 'completed')


def _iso(value):
    return value.isoformat() if value else None


def check_version(record, expected):
    """Reject an update made against a stale copy of the record"""
    if expected is None:
        return
    if int(expected) != record.version:
        raise ConflictError(
            f"{type(record).__name__} {record.id} was modified by someone else "
            f"(version {record.version}, expected {expected})"
        )


class User(db.Model):
    """Platform identity - admin, host manager or client"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120), default='')
    role = db.Column(db.String(20), nullable=False, default='client')
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password, method='pbkdf2:sha256')

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'hostId': self.host_id,
            'createdAt': _iso(self.created_at),
        }


class Host(db.Model):
    """Host model - the tenant owning sites, services and orders"""
    __tablename__ = 'hosts'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(30), default='')
    address = db.Column(db.String(255), default='')
    currency = db.Column(db.String(8), nullable=True)
    language = db.Column(db.String(8), default='fr')
    is_active = db.Column(db.Boolean, default=True)

    # Reservation page settings
    enable_room_reservations = db.Column(db.Boolean, nullable=False, default=True)
    enable_table_reservations = db.Column(db.Boolean, nullable=False, default=True)
    hero_image_url = db.Column(db.String(500), nullable=True)

    # Loyalty settings
    loyalty_enabled = db.Column(db.Boolean, nullable=False, default=False)
    points_per_euro_spent = db.Column(db.Float, nullable=False, default=0)
    points_per_night_room = db.Column(db.Float, nullable=False, default=0)
    points_per_table_booking = db.Column(db.Float, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships - deleting a host removes everything it owns
    users = db.relationship('User', backref='host', lazy=True, cascade='all, delete')
    sites = db.relationship('Site', backref='host', lazy=True, cascade='all, delete-orphan')
    locations = db.relationship('RoomOrTable', backref='host', lazy=True, cascade='all, delete-orphan')
    tags = db.relationship('Tag', backref='host', lazy=True, cascade='all, delete-orphan')
    service_categories = db.relationship('ServiceCategory', backref='host', lazy=True, cascade='all, delete-orphan')
    services = db.relationship('Service', backref='host', lazy=True, cascade='all, delete-orphan')
    forms = db.relationship('CustomForm', backref='host', lazy=True, cascade='all, delete-orphan')
    menu_cards = db.relationship('MenuCard', backref='host', lazy=True, cascade='all, delete-orphan')
    orders = db.relationship('Order', backref='host', lazy=True, cascade='all, delete-orphan')
    clients = db.relationship('Client', backref='host', lazy=True, cascade='all, delete-orphan')
    reservations = db.relationship('Reservation', backref='host', lazy=True, cascade='all, delete-orphan')

    def reservation_settings(self):
        return {
            'enableRoomReservations': self.enable_room_reservations,
            'enableTableReservations': self.enable_table_reservations,
            'heroImageUrl': self.hero_image_url,
        }

    def loyalty_settings(self):
        return {
            'enabled': self.loyalty_enabled,
            'pointsPerEuroSpent': self.points_per_euro_spent,
            'pointsPerNightRoom': self.points_per_night_room,
            'pointsPerTableBooking': self.points_per_table_booking,
        }

    def to_dict(self):
        return {
            'hostId': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'currency': self.currency,
            'language': self.language,
            'isActive': self.is_active,
            'reservationPageSettings': self.reservation_settings(),
            'loyaltySettings': self.loyalty_settings(),
            'createdAt': _iso(self.created_at),
        }


class Site(db.Model):
    """Global site - one physical establishment of a host"""
    __tablename__ = 'sites'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    logo_url = db.Column(db.String(500), nullable=True)
    primary_color = db.Column(db.String(7), nullable=True)

    locations = db.relationship('RoomOrTable', backref='global_site', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'siteId': self.id,
            'name': self.name,
            'hostId': self.host_id,
            'logoUrl': self.logo_url,
            'primaryColor': self.primary_color,
        }


class RoomOrTable(db.Model):
    """Location - a room, a table or a zone inside a site"""
    __tablename__ = 'locations'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    global_site_id = db.Column(db.Integer, db.ForeignKey('sites.id'), nullable=False)
    parent_location_id = db.Column(db.Integer, db.ForeignKey('locations.id', ondelete='SET NULL'), nullable=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='Table')
    capacity = db.Column(db.Integer, nullable=True)
    description = db.Column(db.Text, default='')
    prix_par_nuit = db.Column(Money, nullable=True)
    prix_fixe_reservation = db.Column(Money, nullable=True)
    tag_ids = db.Column(db.JSON, nullable=False, default=list)
    menu_card_id = db.Column(db.Integer, db.ForeignKey('menu_cards.id', ondelete='SET NULL'), nullable=True)

    @property
    def url_personnalise(self):
        return f"/client/{self.host_id}/{self.id}"

    @property
    def display_name(self):
        return f"{self.type} {self.name}"

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'hostId': self.host_id,
            'globalSiteId': self.global_site_id,
            'parentLocationId': self.parent_location_id,
            'urlPersonnalise': self.url_personnalise,
            'capacity': self.capacity,
            'description': self.description,
            'prixParNuit': self.prix_par_nuit,
            'prixFixeReservation': self.prix_fixe_reservation,
            'tagIds': list(self.tag_ids or []),
            'menuCardId': self.menu_card_id,
        }


class Tag(db.Model):
    __tablename__ = 'tags'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    name = db.Column(db.String(60), nullable=False)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'hostId': self.host_id}


class ServiceCategory(db.Model):
    __tablename__ = 'service_categories'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    image = db.Column(db.String(500), nullable=True)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'hostId': self.host_id, 'image': self.image}


class CustomForm(db.Model):
    """Form schema bound to a service"""
    __tablename__ = 'custom_forms'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    name = db.Column(db.String(120), nullable=False)

    fields = db.relationship(
        'FormField', backref='form', lazy=True, cascade='all, delete-orphan',
        order_by='FormField.order',
    )

    def to_dict(self, with_fields=False):
        data = {'id': self.id, 'name': self.name, 'hostId': self.host_id}
        if with_fields:
            data['fields'] = [f.to_dict() for f in self.fields]
        return data


class FormField(db.Model):
    __tablename__ = 'form_fields'

    id = db.Column(db.Integer, primary_key=True)
    form_id = db.Column(db.Integer, db.ForeignKey('custom_forms.id'), nullable=False)
    label = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='text')
    required = db.Column(db.Boolean, nullable=False, default=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    placeholder = db.Column(db.String(255), nullable=True)
    options = db.Column(db.JSON, nullable=True)

    @property
    def key(self):
        return str(self.id)

    def to_dict(self):
        return {
            'id': self.id,
            'formulaireId': self.form_id,
            'label': self.label,
            'type': self.type,
            'obligatoire': self.required,
            'ordre': self.order,
            'placeholder': self.placeholder,
            'options': self.options,
        }


class Service(db.Model):
    __tablename__ = 'services'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('service_categories.id', ondelete='SET NULL'), nullable=True)
    form_id = db.Column(db.Integer, db.ForeignKey('custom_forms.id', ondelete='SET NULL'), nullable=True)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, default='')
    image = db.Column(db.String(500), nullable=True)
    price = db.Column(Money, nullable=True)
    target_location_ids = db.Column(db.JSON, nullable=False, default=list)
    login_required = db.Column(db.Boolean, nullable=False, default=False)

    form = db.relationship('CustomForm', lazy=True)

    def targets(self, location_id):
        """Services without targets are offered at every location"""
        ids = self.target_location_ids or []
        return not ids or location_id in ids

    def to_dict(self):
        return {
            'id': self.id,
            'titre': self.title,
            'description': self.description,
            'image': self.image,
            'categorieId': self.category_id,
            'hostId': self.host_id,
            'formulaireId': self.form_id,
            'prix': self.price,
            'targetLocationIds': list(self.target_location_ids or []),
            'loginRequired': self.login_required,
        }


class MenuCard(db.Model):
    __tablename__ = 'menu_cards'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    global_site_id = db.Column(db.Integer, db.ForeignKey('sites.id', ondelete='SET NULL'), nullable=True)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    categories = db.relationship(
        'MenuCategory', backref='card', lazy=True, cascade='all, delete-orphan',
        order_by='MenuCategory.order',
    )

    def to_dict(self, with_items=False):
        data = {
            'id': self.id,
            'name': self.name,
            'hostId': self.host_id,
            'globalSiteId': self.global_site_id,
            'isActive': self.is_active,
        }
        if with_items:
            data['categories'] = [c.to_dict(with_items=True) for c in self.categories]
        return data


class MenuCategory(db.Model):
    __tablename__ = 'menu_categories'

    id = db.Column(db.Integer, primary_key=True)
    menu_card_id = db.Column(db.Integer, db.ForeignKey('menu_cards.id'), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)

    items = db.relationship('MenuItem', backref='category', lazy=True, cascade='all, delete-orphan')

    def to_dict(self, with_items=False):
        data = {'id': self.id, 'menuCardId': self.menu_card_id, 'name': self.name, 'order': self.order}
        if with_items:
            data['items'] = [i.to_dict() for i in self.items]
        return data


class MenuItem(db.Model):
    __tablename__ = 'menu_items'

    id = db.Column(db.Integer, primary_key=True)
    menu_category_id = db.Column(db.Integer, db.ForeignKey('menu_categories.id'), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, default='')
    price = db.Column(Money, nullable=False, default=0)
    image_url = db.Column(db.String(500), nullable=True)
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    is_configurable = db.Column(db.Boolean, nullable=False, default=False)
    option_groups = db.Column(db.JSON, nullable=False, default=list)
    stock = db.Column(db.Integer, nullable=True)

    @property
    def host_id(self):
        return self.category.card.host_id

    def to_dict(self):
        return {
            'id': self.id,
            'menuCategoryId': self.menu_category_id,
            'name': self.name,
            'description': self.description,
            'price': self.price,
            'imageUrl': self.image_url,
            'isAvailable': self.is_available,
            'isConfigurable': self.is_configurable,
            'optionGroups': list(self.option_groups or []),
            'stock': self.stock,
        }


class Product(db.Model):
    """Catalog product for the plain ordering API"""
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, default='')
    price = db.Column(Money, nullable=False)
    category = db.Column(db.String(80), nullable=False)
    image_url = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'price': self.price,
            'category': self.category,
            'imageUrl': self.image_url,
            'isActive': self.is_active,
            'createdAt': _iso(self.created_at),
        }


class Client(db.Model):
    """Host-scoped customer record - credit and loyalty points live here"""
    __tablename__ = 'clients'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), nullable=True)
    telephone = db.Column(db.String(30), nullable=True)
    type = db.Column(db.String(20), nullable=False, default='passager')
    date_arrivee = db.Column(db.Date, nullable=True)
    date_depart = db.Column(db.Date, nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id', ondelete='SET NULL'), nullable=True)
    notes = db.Column(db.Text, default='')
    credit = db.Column(Money, nullable=True)
    points_fidelite = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'hostId': self.host_id,
            'userId': self.user_id,
            'nom': self.name,
            'email': self.email,
            'telephone': self.telephone,
            'type': self.type,
            'dateArrivee': _iso(self.date_arrivee),
            'dateDepart': _iso(self.date_depart),
            'locationId': self.location_id,
            'notes': self.notes,
            'credit': self.credit,
            'pointsFidelite': self.points_fidelite,
        }


class Payment(db.Model):
    """Payment line recorded against an order or a reservation"""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey('reservations.id'), nullable=True)
    type = db.Column(db.String(20), nullable=False, default='cash')
    montant = db.Column(Money, nullable=False)
    date = db.Column(db.DateTime, default=datetime.utcnow)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            'type': self.type,
            'montant': self.montant,
            'date': _iso(self.date),
            'notes': self.notes,
        }


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='SET NULL'), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(Money, nullable=False)

    product = db.relationship('Product', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'productId': self.product_id,
            'quantity': self.quantity,
            'price': self.price,
            'product': self.product.to_dict() if self.product else None,
        }


class Order(db.Model):
    """A request for a service or a menu item at a location"""
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), nullable=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id', ondelete='SET NULL'), nullable=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey('menu_items.id', ondelete='SET NULL'), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id', ondelete='SET NULL'), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id', ondelete='SET NULL'), nullable=True)
    client_name = db.Column(db.String(120), nullable=True)

    status = db.Column(db.String(20), nullable=False, default='pending')
    prix_total = db.Column(Money, nullable=True)
    montant_paye = db.Column(Money, nullable=True)
    currency = db.Column(db.String(8), nullable=True)
    points_gagnes = db.Column(db.Integer, nullable=True)
    donnees_formulaire = db.Column(db.Text, nullable=False, default='{}')
    notes = db.Column(db.Text, nullable=True)

    date_heure = db.Column(db.DateTime, default=datetime.utcnow)
    version = db.Column(db.Integer, nullable=False)

    items = db.relationship('OrderItem', backref='order', lazy=True, cascade='all, delete-orphan')
    payments = db.relationship('Payment', backref='order', lazy=True, cascade='all, delete-orphan')
    location = db.relationship('RoomOrTable', lazy=True)

    __mapper_args__ = {'version_id_col': version}

    @property
    def solde_du(self):
        return record_balance(self.prix_total, self.montant_paye)

    def to_dict(self):
        return {
            'id': self.id,
            'orderNumber': self.order_number,
            'hostId': self.host_id,
            'serviceId': self.service_id,
            'menuItemId': self.menu_item_id,
            'chambreTableId': self.location_id,
            'userId': self.user_id,
            'clientId': self.client_id,
            'clientNom': self.client_name,
            'status': self.status,
            'prixTotal': self.prix_total,
            'montantPaye': self.montant_paye,
            'soldeDu': self.solde_du,
            'currency': self.currency,
            'pointsGagnes': self.points_gagnes,
            'donneesFormulaire': self.donnees_formulaire,
            'notes': self.notes,
            'dateHeure': _iso(self.date_heure),
            'items': [i.to_dict() for i in self.items],
            'paiements': [p.to_dict() for p in self.payments],
            'version': self.version,
        }


class Reservation(db.Model):
    """Booking of a room for a date range or a table for one event"""
    __tablename__ = 'reservations'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('hosts.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id', ondelete='SET NULL'), nullable=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id', ondelete='SET NULL'), nullable=True)
    type = db.Column(db.String(20), nullable=False, default='Chambre')

    client_name = db.Column(db.String(120), nullable=False)
    date_arrivee = db.Column(db.Date, nullable=False)
    date_depart = db.Column(db.Date, nullable=True)
    nombre_personnes = db.Column(db.Integer, nullable=False, default=1)
    animaux_domestiques = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, default='')
    channel = db.Column(db.String(40), nullable=True)

    status = db.Column(db.String(20), nullable=False, default='pending')

    # Pricing
    prix_total = db.Column(Money, nullable=True)
    montant_paye = db.Column(Money, nullable=True)
    currency = db.Column(db.String(8), nullable=True)
    points_gagnes = db.Column(db.Integer, nullable=True)

    # Online check-in / check-out
    online_checkin_data = db.Column(db.JSON, nullable=True)
    online_checkin_status = db.Column(db.String(20), nullable=True)
    checkout_notes = db.Column(db.Text, nullable=True)
    client_initiated_checkout_time = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    version = db.Column(db.Integer, nullable=False)

    payments = db.relationship('Payment', backref='reservation', lazy=True, cascade='all, delete-orphan')
    location = db.relationship('RoomOrTable', lazy=True)
    client = db.relationship('Client', lazy=True)

    __mapper_args__ = {'version_id_col': version}

    @property
    def solde_du(self):
        return record_balance(self.prix_total, self.montant_paye)

    def to_dict(self):
        return {
            'id': self.id,
            'hostId': self.host_id,
            'locationId': self.location_id,
            'type': self.type,
            'clientId': self.client_id,
            'clientName': self.client_name,
            'dateArrivee': _iso(self.date_arrivee),
            'dateDepart': _iso(self.date_depart),
            'nombrePersonnes': self.nombre_personnes,
            'animauxDomestiques': self.animaux_domestiques,
            'notes': self.notes,
            'channel': self.channel,
            'status': self.status,
            'prixTotal': self.prix_total,
            'montantPaye': self.montant_paye,
            'soldeDu': self.solde_du,
            'currency': self.currency,
            'pointsGagnes': self.points_gagnes,
            'paiements': [p.to_dict() for p in self.payments],
            'onlineCheckinData': self.online_checkin_data,
            'onlineCheckinStatus': self.online_checkin_status,
            'checkoutNotes': self.checkout_notes,
            'clientInitiatedCheckoutTime': _iso(self.client_initiated_checkout_time),
            'version': self.version,
        }
