import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from flashcard_svc.identity import AuthenticatedUser, get_current_user
from flashcard_svc.models.base import get_db
from flashcard_svc.user_store import UserStore

router = APIRouter()


class ApiKeyRequest(BaseModel):
    apiKey: Optional[str] = None


@router.get("/me/anthropic-key", status_code=200)
def get_anthropic_key(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"apiKey": UserStore(db).get_api_key(user.uid)}


@router.put("/me/anthropic-key", status_code=200)
def set_anthropic_key(
    request: ApiKeyRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    api_key = (request.apiKey or "").strip() or None
    try:
        UserStore(db).set_api_key(user.uid, api_key)
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save API key")
    return {"success": True, "apiKey": api_key}
