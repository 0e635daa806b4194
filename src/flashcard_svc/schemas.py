from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from flashcard_svc.models.user import SubscriptionStatus


class SubscriptionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    stripe_customer_id: Optional[str] = Field(default=None, alias="stripeCustomerId")
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.UNSUBSCRIBED, alias="subscriptionStatus")


class Flashcard(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    question: str
    answer: str
    topic: str
    created_at: int = Field(alias="createdAt")


class NewFlashcard(BaseModel):
    question: str
    answer: str


class FlashcardSet(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    topic: str
    flashcards: List[Flashcard]
    user_id: str = Field(alias="userId")
    created_at: int = Field(alias="createdAt")
