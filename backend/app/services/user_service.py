"""User store lookups used by billing reconciliation"""
import logging
from typing import Optional, Union
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.user import User
from app.schemas.billing import UserNotFound

logger = logging.getLogger(__name__)


def get_user_by_id(user_id: int, db: Session) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def find_user_by_customer_id(customer_id: Optional[str], db: Session) -> Union[User, UserNotFound]:
    if customer_id:
        user = db.query(User).filter(User.stripe_customer_id == customer_id).first()
        if user:
            return user
    return UserNotFound(customer_id=customer_id)


def find_user_by_email(email: Optional[str], db: Session) -> Union[User, UserNotFound]:
    """Case-insensitive email match"""
    if email:
        user = db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
        if user:
            return user
    return UserNotFound(email=email)


def locate_user(db: Session, customer_id: Optional[str] = None, email: Optional[str] = None) -> Union[User, UserNotFound]:
    """Find the user by Stripe customer id, falling back to the checkout email"""
    user = find_user_by_customer_id(customer_id, db)
    if isinstance(user, User):
        return user
    if email:
        user = find_user_by_email(email, db)
        if isinstance(user, User):
            logger.info(f"Matched user {user.id} by email fallback (customer {customer_id} not linked yet)")
            return user
    return UserNotFound(customer_id=customer_id, email=email)
