import enum
from datetime import datetime
from extensions import db # Import the SQLAlchemy instance.
from utils.helpers import isoformat

class PaymentStatusEnum(enum.Enum):
    """
    Local status of a payment, mirroring the lifecycle of its Stripe PaymentIntent.
    """
    PENDING = 'pending'       # Intent created; waiting for the customer or Stripe to finish.
    SUCCEEDED = 'succeeded'   # Funds captured.
    FAILED = 'failed'         # Last payment attempt failed (payment_intent.payment_failed).
    CANCELED = 'canceled'     # Intent canceled before completion.

    @staticmethod
    def from_stripe_status(stripe_status_str):
        """
        Maps a Stripe PaymentIntent status string to a PaymentStatusEnum member.
        Args:
            stripe_status_str (str): The status string from Stripe (e.g., "succeeded", "requires_action").
        Returns:
            PaymentStatusEnum or None: The corresponding enum member, or None if the status is unknown.
        """
        # Stripe status reference: https://stripe.com/docs/payments/intents#intent-statuses
        if not stripe_status_str:
            return None
        mapping = {
            'succeeded': PaymentStatusEnum.SUCCEEDED,
            'canceled': PaymentStatusEnum.CANCELED,
            'processing': PaymentStatusEnum.PENDING,
            'requires_payment_method': PaymentStatusEnum.PENDING,
            'requires_confirmation': PaymentStatusEnum.PENDING,
            'requires_action': PaymentStatusEnum.PENDING,
            'requires_capture': PaymentStatusEnum.PENDING,
        }
        return mapping.get(stripe_status_str.lower(), None)


class Payment(db.Model):
    """
    Local ledger row for a Stripe PaymentIntent.

    The row is created when the intent is created and its status is kept in sync
    from the confirm endpoint and from Stripe webhooks.
    """
    __tablename__ = 'payments'
    __table_args__ = (
        db.Index('ix_payments_user_id_created_at', 'user_id', 'created_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    # Optional link to the item being paid for. Kept when the item is deleted.
    item_id = db.Column(db.Integer, db.ForeignKey('items.id', ondelete='SET NULL'), nullable=True, index=True)

    stripe_payment_intent_id = db.Column(db.String(255), unique=True, nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False) # Smallest currency unit (e.g., cents).
    currency = db.Column(db.String(3), nullable=False, default='usd')
    status = db.Column(db.Enum(PaymentStatusEnum), nullable=False, default=PaymentStatusEnum.PENDING, index=True)
    description = db.Column(db.String(1000), nullable=True)
    # "metadata" is reserved on declarative models, so the attribute name differs from the column name.
    payment_metadata = db.Column('metadata', db.JSON, nullable=True)
    payment_date = db.Column(db.DateTime, nullable=True) # When the payment succeeded.

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    item = db.relationship('Item')

    def apply_status(self, status):
        """
        Updates the status, stamping payment_date when the payment succeeds.

        SUCCEEDED is final: Stripe may deliver an older failed or canceled event after
        the success, so such a downgrade is ignored.

        Returns:
            bool: False if the change was ignored.
        """
        if self.status == PaymentStatusEnum.SUCCEEDED and status != PaymentStatusEnum.SUCCEEDED:
            return False
        self.status = status
        if status == PaymentStatusEnum.SUCCEEDED:
            self.payment_date = self.payment_date or datetime.utcnow()
        else:
            self.payment_date = None
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'item_id': self.item_id,
            'stripe_payment_intent_id': self.stripe_payment_intent_id,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status.value if self.status else None,
            'description': self.description,
            'metadata': self.payment_metadata,
            'payment_date': isoformat(self.payment_date),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<Payment {self.id} {self.stripe_payment_intent_id} - Status {self.status.value}>'
