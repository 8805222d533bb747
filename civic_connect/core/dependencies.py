# FastAPI dependencies that hand out the services built during startup.
# Everything lives on app.state; nothing is created at import time.

from fastapi import HTTPException, Request

from civic_connect.core.config import Settings
from civic_connect.services.i18n_service import Translator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_translator(request: Request) -> Translator:
    return request.app.state.translator


def get_store(request: Request):
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Database service unavailable")
    return store


def get_storage(request: Request):
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(status_code=503, detail="Image storage unavailable")
    return storage


def get_feed_service(request: Request):
    feed = getattr(request.app.state, "feed_service", None)
    if feed is None:
        raise HTTPException(status_code=503, detail="Database service unavailable")
    return feed


def get_upvote_registry(request: Request):
    return request.app.state.upvotes


def get_geocoder(request: Request):
    return request.app.state.geocoder
