import enum

from sqlalchemy import Column, String

from flashcard_svc.models.base import Base


class SubscriptionStatus(str, enum.Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"
    PENDING_CANCELLATION = "pending_cancellation"


class User(Base):
    """
    Per-user record: subscription state and the user's cached LLM API key.

    Rows are created by the first write for a user; a missing row reads as an
    unsubscribed user with no customer id.
    """
    __tablename__ = 'users'

    user_id = Column(String, primary_key=True, nullable=False)
    stripe_customer_id = Column(String, nullable=True, unique=True, index=True)
    subscription_status = Column(String, nullable=False, default=SubscriptionStatus.UNSUBSCRIBED.value)
    anthropic_key = Column(String, nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.user_id}, customer={self.stripe_customer_id}, status={self.subscription_status})>"
