from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from datetime import timedelta
import logging

from civic_connect.core.auth import get_current_viewer, get_optional_viewer
from civic_connect.core.config import Settings
from civic_connect.core.dependencies import get_settings, get_store, get_translator
from civic_connect.core.exceptions import DuplicateRecord, StoreError
from civic_connect.models.profile_model import Profile, Role, Viewer
from civic_connect.services.i18n_service import Translator
from civic_connect.utils.security import create_access_token, get_password_hash, verify_password
from civic_connect.utils.validators import normalize_email, validate_email, validate_password

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNUP_ROLES = (Role.CITIZEN, Role.OFFICIAL)


# --- Models ---
class SignupRequest(BaseModel):
    email: str
    password: str
    display_name: Optional[str] = None
    role: str = Role.CITIZEN.value
    language: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileResponse(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None
    role: Role
    language: str


class LoginResponse(ProfileResponse):
    token: str


class SettingsUpdate(BaseModel):
    language: str


def _profile_response(profile: Profile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        email=profile.email,
        display_name=profile.display_name,
        role=profile.role,
        language=profile.language,
    )


def _login_response(profile: Profile, settings: Settings) -> LoginResponse:
    token = create_access_token(
        profile.id,
        settings.secret_key,
        claims={"email": profile.email, "role": profile.role.value, "language": profile.language},
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )
    return LoginResponse(token=token, **_profile_response(profile).model_dump())


# --- Endpoints ---

@router.post("/signup", response_model=LoginResponse, status_code=201)
async def signup(
    request: SignupRequest,
    viewer: Viewer = Depends(get_optional_viewer),
    store=Depends(get_store),
    settings: Settings = Depends(get_settings),
    translator: Translator = Depends(get_translator),
):
    lang = viewer.language
    email = normalize_email(request.email)
    if not validate_email(email):
        raise HTTPException(status_code=400, detail=translator.t("invalidEmail", lang))
    if not validate_password(request.password):
        raise HTTPException(status_code=400, detail=translator.t("weakPassword", lang))

    role = Role.parse(request.role)
    if role not in SIGNUP_ROLES:
        raise HTTPException(status_code=403, detail=translator.t("notAllowed", lang))

    language = request.language if translator.supports(request.language) else lang
    display_name = (request.display_name or "").strip() or None

    try:
        profile = await store.create_profile(
            email=email,
            password_hash=get_password_hash(request.password),
            display_name=display_name,
            role=role,
            language=language,
        )
    except DuplicateRecord:
        raise HTTPException(status_code=409, detail=translator.t("emailTaken", lang))
    except StoreError as e:
        logger.error(f"💥 Signup Error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=translator.t("error", lang))

    logger.info(f"✅ Signup successful for {email} ({role.value})")
    return _login_response(profile, settings)


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    viewer: Viewer = Depends(get_optional_viewer),
    store=Depends(get_store),
    settings: Settings = Depends(get_settings),
    translator: Translator = Depends(get_translator),
):
    email = normalize_email(request.email)
    logger.info(f"👉 Login attempt for: {email}")

    try:
        profile = await store.find_profile_by_email(email)
    except StoreError as e:
        logger.error(f"💥 Login Error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=translator.t("error", viewer.language))

    if profile is None or not verify_password(request.password, profile.password_hash):
        logger.warning(f"❌ Login failed for {email}")
        raise HTTPException(status_code=401, detail=translator.t("invalidCredentials", viewer.language))

    logger.info(f"✅ Login successful for {email} ({profile.role.value})")
    return _login_response(profile, settings)


@router.get("/me", response_model=ProfileResponse)
async def read_profile(
    viewer: Viewer = Depends(get_current_viewer),
    store=Depends(get_store),
    translator: Translator = Depends(get_translator),
):
    try:
        profile = await store.get_profile(viewer.user_id)
    except StoreError as e:
        logger.error(f"Failed to load profile {viewer.user_id}: {e}")
        raise HTTPException(status_code=500, detail=translator.t("error", viewer.language))
    if profile is None:
        raise HTTPException(status_code=404, detail=translator.t("authRequired", viewer.language))
    return _profile_response(profile)


@router.patch("/me")
async def update_settings(
    update: SettingsUpdate,
    viewer: Viewer = Depends(get_current_viewer),
    store=Depends(get_store),
    translator: Translator = Depends(get_translator),
):
    if not translator.supports(update.language):
        raise HTTPException(status_code=400, detail=translator.t("unsupportedLanguage", viewer.language))

    try:
        profile = await store.update_profile_language(viewer.user_id, update.language)
    except StoreError as e:
        logger.error(f"Error saving settings: {e}")
        raise HTTPException(status_code=500, detail=translator.t("saveSettingsFailed", viewer.language))
    if profile is None:
        raise HTTPException(status_code=404, detail=translator.t("authRequired", viewer.language))

    return {
        "message": translator.t("settingsSaved", update.language),
        "profile": _profile_response(profile).model_dump(mode="json"),
    }
