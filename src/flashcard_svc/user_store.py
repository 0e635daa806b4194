import logging
import time
import uuid
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from flashcard_svc import schemas
from flashcard_svc.models.flashcard_set import Flashcard, FlashcardSet
from flashcard_svc.models.user import SubscriptionStatus, User


def _now_millis() -> int:
    return int(time.time() * 1000)


class UserStore:
    """
    Per-user storage for the ``users/<id>/...`` tree.

    Every write is an upsert: the user row is created when it does not exist
    yet, so callers never need a separate "create user" step. Reads of an
    absent user return the default record (no customer id, unsubscribed).
    Each public write method commits exactly once and rolls back on failure.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _get_user(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.user_id == user_id).first()

    def _get_or_new_user(self, user_id: str) -> User:
        user = self._get_user(user_id)
        if user is None:
            user = User(user_id=user_id, subscription_status=SubscriptionStatus.UNSUBSCRIBED.value)
            self.db.add(user)
            # Rows referencing users.user_id must be inserted after the user
            self.db.flush()
        return user

    def _commit(self, description: str) -> None:
        try:
            self.db.commit()
        except Exception as commit_error:
            self.db.rollback()
            logging.error(f"Store write failed ({description}): {commit_error}", exc_info=True)
            raise

    # Subscription state

    def get_subscription(self, user_id: str) -> schemas.SubscriptionRecord:
        user = self._get_user(user_id)
        if user is None:
            return schemas.SubscriptionRecord(user_id=user_id)
        return schemas.SubscriptionRecord(
            user_id=user.user_id,
            stripe_customer_id=user.stripe_customer_id,
            subscription_status=SubscriptionStatus(user.subscription_status),
        )

    def set_subscription_status(
        self,
        user_id: str,
        status: SubscriptionStatus,
        customer_id: Optional[str] = None,
    ) -> None:
        """
        Set the subscription status of a user, creating the record if needed.

        :param customer_id: assigned only when the record has no customer id yet.
        """
        user = self._get_or_new_user(user_id)
        user.subscription_status = status.value
        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
        self._commit(f"status of {user_id} -> {status.value}")

    def assign_customer_id(self, user_id: str, customer_id: str) -> str:
        """
        Record the payment customer id of a user; the first assignment wins.

        :return: the customer id stored for the user after the call.
        """
        user = self._get_or_new_user(user_id)
        if user.stripe_customer_id:
            if user.stripe_customer_id != customer_id:
                logging.warning(
                    f"User {user_id} already has customer {user.stripe_customer_id}; ignoring {customer_id}"
                )
            return user.stripe_customer_id
        user.stripe_customer_id = customer_id
        self._commit(f"customer of {user_id} -> {customer_id}")
        return customer_id

    def find_user_by_customer_id(self, customer_id: str) -> Optional[str]:
        user = self.db.query(User).filter(User.stripe_customer_id == customer_id).first()
        return user.user_id if user else None

    # Cached API key

    def get_api_key(self, user_id: str) -> Optional[str]:
        user = self._get_user(user_id)
        return user.anthropic_key if user else None

    def set_api_key(self, user_id: str, api_key: Optional[str]) -> None:
        user = self._get_or_new_user(user_id)
        user.anthropic_key = api_key or None
        self._commit(f"api key of {user_id}")

    # Saved flashcard sets

    def list_flashcard_sets(self, user_id: str) -> List[schemas.FlashcardSet]:
        rows = (
            self.db.query(FlashcardSet)
            .filter(FlashcardSet.user_id == user_id)
            .order_by(FlashcardSet.created_at.desc())
            .all()
        )
        return [self._to_schema(row) for row in rows]

    def save_flashcard_set(
        self,
        user_id: str,
        title: str,
        topic: str,
        cards: Sequence[schemas.NewFlashcard],
    ) -> schemas.FlashcardSet:
        self._get_or_new_user(user_id)
        created_at = _now_millis()
        flashcard_set = FlashcardSet(
            id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            topic=topic,
            created_at=created_at,
        )
        for position, card in enumerate(cards):
            flashcard_set.flashcards.append(
                Flashcard(
                    position=position,
                    card_id=f"{flashcard_set.id}-{position}",
                    question=card.question,
                    answer=card.answer,
                    topic=topic,
                    created_at=created_at,
                )
            )
        self.db.add(flashcard_set)
        self._commit(f"new flashcard set for {user_id}")
        return self._to_schema(flashcard_set)

    def delete_flashcard_set(self, user_id: str, set_id: str) -> bool:
        """Delete one of the user's sets. Returns False if the user has no such set."""
        flashcard_set = (
            self.db.query(FlashcardSet)
            .filter(FlashcardSet.id == set_id, FlashcardSet.user_id == user_id)
            .first()
        )
        if flashcard_set is None:
            return False
        self.db.delete(flashcard_set)
        self._commit(f"delete flashcard set {set_id} of {user_id}")
        return True

    @staticmethod
    def _to_schema(row: FlashcardSet) -> schemas.FlashcardSet:
        return schemas.FlashcardSet(
            id=row.id,
            title=row.title,
            topic=row.topic,
            user_id=row.user_id,
            created_at=row.created_at,
            flashcards=[
                schemas.Flashcard(
                    id=card.card_id,
                    question=card.question,
                    answer=card.answer,
                    topic=card.topic,
                    created_at=card.created_at,
                )
                for card in row.flashcards
            ],
        )
