from fastapi import HTTPException, Depends, Header, Request, status
from typing import Optional
import logging

from civic_connect.core.config import Settings
from civic_connect.models.profile_model import Role, Viewer
from civic_connect.services.i18n_service import Translator
from civic_connect.utils.security import decode_access_token

logger = logging.getLogger(__name__)


def viewer_from_token(token: Optional[str], settings: Settings, language: str = "en") -> Viewer:
    """Decode a bearer token into a Viewer; anything unusable yields an anonymous viewer."""
    if not token:
        return Viewer.anonymous(language)
    payload = decode_access_token(token, settings.secret_key)
    if payload is None:
        logger.info("Rejected invalid or expired token; continuing as anonymous")
        return Viewer.anonymous(language)
    return Viewer(
        user_id=payload["sub"],
        email=payload.get("email"),
        role=Role.parse(payload.get("role")),
        language=payload.get("language") or language,
    )


async def get_optional_viewer(
    request: Request,
    authorization: Optional[str] = Header(None),
    accept_language: Optional[str] = Header(None),
) -> Viewer:
    """
    Viewer for public endpoints. Missing or bad tokens are not an error here;
    the caller is simply anonymous.
    """
    settings: Settings = request.app.state.settings
    translator: Translator = request.app.state.translator
    language = translator.negotiate(accept_language=accept_language)

    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip()

    viewer = viewer_from_token(token, settings, language)
    if viewer.is_authenticated and not translator.supports(viewer.language):
        viewer.language = language
    return viewer


async def get_current_viewer(
    request: Request,
    viewer: Viewer = Depends(get_optional_viewer),
) -> Viewer:
    if not viewer.is_authenticated:
        translator: Translator = request.app.state.translator
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=translator.t("authRequired", viewer.language),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return viewer
