import secrets
from datetime import datetime, timedelta
from extensions import db
from utils.helpers import isoformat
from utils.security import hash_access_token

class PersonalAccessToken(db.Model):
    """
    A bearer token issued to a user on login, registration or social sign-in.

    The plain-text token handed to the client has the form "<id>|<secret>".
    Only the SHA-256 hash of the secret is persisted, so a database leak does not
    leak usable tokens.
    """
    __tablename__ = 'personal_access_tokens'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    token = db.Column(db.String(64), unique=True, nullable=False) # SHA-256 hex digest of the secret.
    last_used_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True) # None means the token never expires.
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @classmethod
    def issue(cls, user, name, expiration_minutes=None):
        """
        Creates and flushes a token for `user`.

        Returns:
            tuple: (PersonalAccessToken, plain_text_token)
        """
        secret = secrets.token_urlsafe(30) # 40 URL-safe characters.
        access_token = cls(
            user=user,
            name=name,
            token=hash_access_token(secret),
            expires_at=datetime.utcnow() + timedelta(minutes=expiration_minutes) if expiration_minutes else None,
        )
        db.session.add(access_token)
        db.session.flush() # Assigns the primary key used in the plain-text token.
        return access_token, f'{access_token.id}|{secret}'

    @classmethod
    def find_token(cls, plain_text):
        """
        Resolves a plain-text bearer token to its stored record.

        Accepts both the "<id>|<secret>" form and a bare secret.
        Returns None when no record matches.
        """
        if not plain_text:
            return None
        if '|' not in plain_text:
            return cls.query.filter_by(token=hash_access_token(plain_text)).first()

        token_id, secret = plain_text.split('|', 1)
        if not token_id.isdigit():
            return None
        access_token = db.session.get(cls, int(token_id))
        if access_token is None or not secrets.compare_digest(access_token.token, hash_access_token(secret)):
            return None
        return access_token

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.utcnow())

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'last_used_at': isoformat(self.last_used_at),
            'expires_at': isoformat(self.expires_at),
            'created_at': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<PersonalAccessToken {self.id} user={self.user_id}>'
