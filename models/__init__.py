from .user import User
from .access_token import PersonalAccessToken
from .item import Item
from .payment import Payment, PaymentStatusEnum
