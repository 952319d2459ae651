from datetime import datetime
from extensions import db
from utils.helpers import isoformat

class Item(db.Model):
    """
    An item owned by a user. Items can optionally carry a price and be referenced by payments.
    """
    __tablename__ = 'items'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(1000), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=True) # Numeric type for precise decimal values (e.g., 19.99).
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            # Serialized as a fixed two-decimal string so clients never see float rounding artifacts.
            'price': f'{self.price:.2f}' if self.price is not None else None,
            'user_id': self.user_id,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<Item {self.id} {self.name}>'
