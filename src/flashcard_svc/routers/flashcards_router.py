import logging
from typing import List, Optional

import anthropic
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from flashcard_svc.config import Settings, get_settings, secret_value
from flashcard_svc.exceptions import FlashcardParseError
from flashcard_svc.flashcard_generator import FlashcardGenerator
from flashcard_svc.identity import AuthenticatedUser, get_current_user
from flashcard_svc.models.base import get_db
from flashcard_svc.schemas import NewFlashcard
from flashcard_svc.user_store import UserStore

router = APIRouter()


class GenerateRequest(BaseModel):
    topic: Optional[str] = None
    count: int = Field(default=10, ge=1, le=50)
    apiKey: Optional[str] = None


class FlashcardSetRequest(BaseModel):
    title: str = Field(min_length=1)
    topic: str
    flashcards: List[NewFlashcard]


def build_generator(api_key: str, settings: Settings) -> FlashcardGenerator:
    return FlashcardGenerator(api_key, model=settings.anthropic_model, max_tokens=settings.anthropic_max_tokens)


@router.post("/generate", status_code=200)
def generate_flashcards(request: GenerateRequest, settings: Settings = Depends(get_settings)):
    topic = (request.topic or "").strip()
    logging.info(f"Generate request: count={request.count}, apiKey={'present' if request.apiKey else 'not present'}")
    if not topic:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Topic is required")

    api_key = request.apiKey or secret_value(settings.anthropic_api_key)
    if not api_key:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="No API key available")

    try:
        flashcards = build_generator(api_key, settings).generate(topic, request.count)
    except FlashcardParseError as e:
        logging.error(f"Could not parse generated flashcards: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=FlashcardParseError.user_message)
    except anthropic.APIStatusError as e:
        logging.error(f"Error generating flashcards: {e}", exc_info=True)
        raise HTTPException(status_code=e.status_code, detail="Failed to generate flashcards")
    except Exception as e:
        logging.error(f"Error generating flashcards: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to generate flashcards")
    return {"flashcards": flashcards}


@router.get("/sets", status_code=200)
def list_flashcard_sets(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sets = UserStore(db).list_flashcard_sets(user.uid)
    return {"sets": [s.model_dump(by_alias=True) for s in sets]}


@router.post("/sets", status_code=201)
def save_flashcard_set(
    request: FlashcardSetRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        saved = UserStore(db).save_flashcard_set(user.uid, request.title, request.topic, request.flashcards)
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save flashcard set")
    return saved.model_dump(by_alias=True)


@router.delete("/sets/{set_id}", status_code=204)
def delete_flashcard_set(
    set_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not UserStore(db).delete_flashcard_set(user.uid, set_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Flashcard set not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
