import hashlib
from datetime import datetime
from flask import current_app
from extensions import db
import bcrypt
from flask_login import UserMixin # For Flask-Login integration (e.g., current_user).
from utils.helpers import isoformat

class User(db.Model, UserMixin):
    """
    Represents a user of the API.

    Stores authentication details (email, bcrypt password hash), profile information,
    and the social identity provider the account is linked to (at most one).
    UserMixin provides the attributes Flask-Login expects (is_authenticated, get_id, ...).
    """
    __tablename__ = 'users' # Specifies the database table name.
    __table_args__ = (
        # A given provider account can be linked to one user only.
        db.UniqueConstraint('provider', 'provider_id', name='uq_users_provider_provider_id'),
    )

    # --- Basic User Information ---
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True) # Stored lowercase.
    password_hash = db.Column(db.String(128), nullable=True) # Nullable for accounts created through a social provider.
    email_verified_at = db.Column(db.DateTime, nullable=True)

    # --- Social Provider Link ---
    provider = db.Column(db.String(50), nullable=True)     # 'google', 'facebook' or 'github'.
    provider_id = db.Column(db.String(255), nullable=True) # The user's ID at the provider. Never serialized.
    avatar = db.Column(db.String(2048), nullable=True)     # Avatar URL reported by the provider.

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # --- Relationships ---
    tokens = db.relationship('PersonalAccessToken', backref='user', lazy='dynamic', cascade='all, delete-orphan')
    items = db.relationship('Item', backref='user', lazy='dynamic', cascade='all, delete-orphan')
    payments = db.relationship('Payment', backref='user', lazy='dynamic', cascade='all, delete-orphan')

    def set_password(self, password):
        """
        Hashes the provided password and stores it in `password_hash`.

        Args:
            password (str): The plain-text password to hash.
        """
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def check_password(self, password):
        """
        Verifies if the provided password matches the stored hashed password.

        Returns:
            bool: True if the password matches. Always False for accounts without a password.
        """
        if self.password_hash and password:
            return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))
        return False

    def has_password(self):
        return self.password_hash is not None

    def has_linked_social_account(self):
        """True when both the provider name and the provider-side user ID are set."""
        return self.provider is not None and self.provider_id is not None

    def can_unlink_social_account(self):
        # Unlinking a social-only account would leave the user with no way to log in.
        return self.has_linked_social_account() and self.has_password()

    @property
    def avatar_url(self):
        """The provider avatar, falling back to the user's Gravatar."""
        if self.avatar:
            return self.avatar
        digest = hashlib.md5(self.email.strip().lower().encode('utf-8')).hexdigest()
        return f'https://www.gravatar.com/avatar/{digest}?d=mp&s=80'

    def create_token(self, name='auth_token'):
        """
        Issues a new personal access token for this user.

        Returns:
            str: The plain-text token ("<id>|<secret>"). Only its hash is stored,
                 so this is the only time the caller can see it.
        """
        from .access_token import PersonalAccessToken # Local import to avoid a circular import at module load.
        expiration = current_app.config.get('ACCESS_TOKEN_EXPIRATION_MINUTES')
        _, plain_text = PersonalAccessToken.issue(self, name, expiration_minutes=expiration)
        return plain_text

    def to_dict(self):
        """JSON representation returned by the API. Password hash and provider_id are never exposed."""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'avatar': self.avatar,
            'avatar_url': self.avatar_url,
            'provider': self.provider,
            'has_password': self.has_password(),
            'email_verified_at': isoformat(self.email_verified_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<User {self.email}>'
