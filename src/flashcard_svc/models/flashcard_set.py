from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from flashcard_svc.models.base import Base


class FlashcardSet(Base):
    __tablename__ = 'flashcard_sets'

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey('users.user_id'), nullable=False, index=True)
    title = Column(String, nullable=False)
    topic = Column(String, nullable=False)
    created_at = Column(BigInteger, nullable=False)

    flashcards = relationship(
        "Flashcard",
        back_populates="flashcard_set",
        cascade="all, delete-orphan",
        order_by="Flashcard.position",
    )

    def __repr__(self) -> str:
        return f"<FlashcardSet(id={self.id}, user={self.user_id}, title={self.title})>"


class Flashcard(Base):
    __tablename__ = 'flashcards'

    pk = Column(Integer, primary_key=True, autoincrement=True)
    set_id = Column(String, ForeignKey('flashcard_sets.id', ondelete="CASCADE"), nullable=False, index=True)
    # Position within the set, keeps cards in the order they were saved
    position = Column(Integer, nullable=False)
    card_id = Column(String, nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    topic = Column(String, nullable=False)
    created_at = Column(BigInteger, nullable=False)

    flashcard_set = relationship("FlashcardSet", back_populates="flashcards")
