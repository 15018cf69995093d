# Authentication: JWT tokens and the per-request session context
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, g, request

from errors import AuthenticationError, PermissionDenied
from models import User


@dataclass(frozen=True)
class SessionContext:
    """Who is calling - built once per request, never shared"""
    user_id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    host_id: Optional[int] = None

    @classmethod
    def anonymous(cls):
        return cls()

    @classmethod
    def for_user(cls, user: User):
        return cls(user_id=user.id, email=user.email, name=user.name, role=user.role, host_id=user.host_id)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def to_dict(self):
        return {
            'id': self.user_id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'hostId': self.host_id,
        }


def _sign(claims):
    config = current_app.config
    now = datetime.utcnow()
    claims.update({
        'exp': now + timedelta(hours=config['JWT_EXPIRATION_HOURS']),
        'iat': now,
    })
    return jwt.encode(claims, config['SECRET_KEY'], algorithm=config['JWT_ALGORITHM'])


def create_jwt_token(user: User) -> str:
    """Create a JWT token for the user"""
    return _sign({'user_id': user.id, 'role': user.role, 'host_id': user.host_id})


def create_mock_token(user: dict) -> str:
    """Token for a mock backend user; its claims carry the whole identity"""
    return _sign({
        'user_id': int(user['id']),
        'role': user['role'],
        'host_id': user.get('hostId'),
        'email': user['email'],
        'name': user.get('name'),
    })


def verify_jwt_token(token: str) -> dict:
    """Verify JWT token and return payload if valid"""
    config = current_app.config
    try:
        return jwt.decode(token, config['SECRET_KEY'], algorithms=[config['JWT_ALGORITHM']])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def load_session():
    """before_request hook: resolve the bearer token into g.session"""
    g.session = SessionContext.anonymous()
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return
    payload = verify_jwt_token(auth_header[7:])
    if not payload:
        return
    if current_app.config['DATA_BACKEND'] == 'mock':
        g.session = SessionContext(
            user_id=payload.get('user_id'),
            email=payload.get('email'),
            name=payload.get('name'),
            role=payload.get('role'),
            host_id=payload.get('host_id'),
        )
        return
    user = User.query.get(payload.get('user_id'))
    if user:
        g.session = SessionContext.for_user(user)


def current_session() -> SessionContext:
    return g.get('session') or SessionContext.anonymous()


def current_user() -> Optional[User]:
    session = current_session()
    if not session.is_authenticated:
        return None
    return User.query.get(session.user_id)


def login_required(f):
    """Authentication decorator"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_session().is_authenticated:
            raise AuthenticationError('Unauthorized')
        return f(*args, **kwargs)
    return decorated_function


def roles_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            session = current_session()
            if not session.is_authenticated:
                raise AuthenticationError('Unauthorized')
            if session.role not in roles:
                raise PermissionDenied(f"Requires role: {', '.join(roles)}")
            return f(*args, **kwargs)
        return decorated_function
    return decorator
