import logging
from typing import Optional

import firebase_admin
from fastapi import Depends, Header, HTTPException, status
from firebase_admin import auth as firebase_auth
from pydantic import BaseModel

from flashcard_svc.config import Settings, get_settings
from flashcard_svc.exceptions import AuthenticationError

FIREBASE_APP_NAME = "flashcard_svc"


class AuthenticatedUser(BaseModel):
    uid: str
    email: Optional[str] = None


class FirebaseIdentityVerifier:
    """Verifies Firebase ID tokens against a lazily initialised Firebase app."""

    def __init__(self, project_id: Optional[str] = None) -> None:
        self.project_id = project_id
        self._app = None

    def _get_app(self):
        if self._app is None:
            try:
                self._app = firebase_admin.get_app(FIREBASE_APP_NAME)
            except ValueError:
                options = {"projectId": self.project_id} if self.project_id else None
                self._app = firebase_admin.initialize_app(options=options, name=FIREBASE_APP_NAME)
        return self._app

    def verify(self, id_token: str) -> AuthenticatedUser:
        try:
            decoded = firebase_auth.verify_id_token(id_token, app=self._get_app())
        except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
                firebase_auth.RevokedIdTokenError, firebase_auth.CertificateFetchError) as e:
            raise AuthenticationError(str(e)) from e
        return AuthenticatedUser(uid=decoded["uid"], email=decoded.get("email"))


_verifiers = {}


def get_identity_verifier(settings: Settings = Depends(get_settings)) -> FirebaseIdentityVerifier:
    verifier = _verifiers.get(settings.firebase_project_id)
    if verifier is None:
        verifier = FirebaseIdentityVerifier(settings.firebase_project_id)
        _verifiers[settings.firebase_project_id] = verifier
    return verifier


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier),
) -> AuthenticatedUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    id_token = authorization[len("Bearer "):].strip()
    if not id_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        return verifier.verify(id_token)
    except AuthenticationError as e:
        logging.error(f"ID token verification failed: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
