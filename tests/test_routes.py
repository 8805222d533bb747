import io
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from civic_connect.core.config import Settings
from civic_connect.main import create_app
from civic_connect.models.profile_model import Role
from civic_connect.services.feed_service import FeedService
from civic_connect.services.summary_service import FALLBACK_SUMMARY
from civic_connect.services.upvote_service import UpvoteGuardRegistry
from civic_connect.utils.security import create_access_token, get_password_hash
from conftest import FakeGeocoder, FakeStorage, FakeStore, FakeSummarizer, make_issue

SECRET = "test-secret"


def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def env():
    store = FakeStore([
        make_issue("pothole", 5, title="Pothole", images=["author-1/1-a.jpg"]),
        make_issue("light", 2, lat=0.0, lng=0.01, title="Street light", age_minutes=5),
        make_issue("garbage", 8, lat=1.0, lng=1.0, title="Garbage", age_minutes=10),
    ])
    store.add_profile("citizen-1", Role.CITIZEN)
    store.add_profile("citizen-2", Role.CITIZEN)
    store.add_profile("official-1", Role.OFFICIAL)

    summarizer = FakeSummarizer(fail_titles={"Garbage"})
    storage = FakeStorage()
    geocoder = FakeGeocoder()

    app = create_app(settings=Settings(secret_key=SECRET))
    app.state.store = store
    app.state.storage = storage
    app.state.feed_service = FeedService(store, summarizer)
    app.state.upvotes = UpvoteGuardRegistry(store)
    app.state.geocoder = geocoder

    return SimpleNamespace(
        client=TestClient(app),
        app=app,
        store=store,
        storage=storage,
        summarizer=summarizer,
        geocoder=geocoder,
    )


def auth(user_id: str, role: Role = Role.CITIZEN, language: str = "en") -> dict:
    token = create_access_token(user_id, SECRET, claims={"role": role.value, "language": language})
    return {"Authorization": f"Bearer {token}"}


# --- Feed ---

def test_feed_without_location_is_ordered_by_upvotes(env):
    resp = env.client.get("/api/issues")
    assert resp.status_code == 200
    data = resp.json()
    assert [i["id"] for i in data["issues"]] == ["garbage", "pothole", "light"]
    assert data["ranked_by_distance"] is False
    assert data["role"] == "citizen"
    assert "X-Process-Time-ms" in resp.headers


def test_feed_with_location_puts_nearby_first(env):
    resp = env.client.get("/api/issues", params={"lat": 0.0, "lng": 0.0})
    data = resp.json()
    assert [i["id"] for i in data["issues"]] == ["light", "garbage", "pothole"]
    assert data["ranked_by_distance"] is True


def test_feed_payload_includes_image_urls_and_maps_link(env):
    issues = {i["id"]: i for i in env.client.get("/api/issues").json()["issues"]}
    assert issues["pothole"]["image_urls"] == ["http://testserver/api/storage/issue-images/author-1/1-a.jpg"]
    assert issues["pothole"]["maps_link"] is None
    assert issues["light"]["maps_link"].startswith("https://www.google.com/maps?q=")


def test_feed_rejects_half_a_coordinate(env):
    resp = env.client.get("/api/issues", params={"lat": 12.0})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Latitude and longitude must be given together."


def test_feed_failure_message_is_translated(env):
    env.store.fail_list = True
    resp = env.client.get("/api/issues", headers={"Accept-Language": "hi-IN,hi;q=0.9"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "समस्याएं लोड नहीं हो सकीं।"


def test_citizen_feed_has_no_summaries(env):
    data = env.client.get("/api/issues", headers=auth("citizen-1")).json()
    assert all(i["ai_summary"] is None for i in data["issues"])
    assert env.summarizer.calls == []


def test_official_feed_has_summaries_with_fallback(env):
    data = env.client.get("/api/issues", headers=auth("official-1", Role.OFFICIAL)).json()
    summaries = {i["id"]: i["ai_summary"] for i in data["issues"]}
    assert data["role"] == "official"
    assert summaries["pothole"] == "Summary: Pothole"
    assert summaries["garbage"] == FALLBACK_SUMMARY
    assert sorted(env.summarizer.calls) == ["Garbage", "Pothole", "Street light"]


def test_feed_marks_viewer_upvotes(env):
    env.store.upvotes.add(("light", "citizen-1"))
    data = env.client.get("/api/issues", headers=auth("citizen-1")).json()
    flags = {i["id"]: i["viewer_upvoted"] for i in data["issues"]}
    assert flags == {"garbage": False, "pothole": False, "light": True}
    assert data["upvoted_issue_ids"] == ["light"]


# --- Issue detail ---

def test_issue_detail(env):
    env.store.upvotes.add(("light", "citizen-1"))
    resp = env.client.get("/api/issues/light", headers=auth("citizen-1"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Street light"
    assert data["viewer_upvoted"] is True
    assert data["comments"] == []


def test_issue_detail_not_found(env):
    resp = env.client.get("/api/issues/missing")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Issue not found"


# --- Upvotes ---

def test_upvote_requires_sign_in(env):
    resp = env.client.post("/api/issues/light/upvote")
    assert resp.status_code == 401


def test_upvote_toggle(env):
    resp = env.client.post("/api/issues/light/upvote", headers=auth("citizen-1"))
    assert resp.status_code == 200
    assert resp.json() == {"ignored": False, "upvoted": True, "upvotes_count": 3}

    resp = env.client.post("/api/issues/light/upvote", headers=auth("citizen-1"))
    assert resp.json() == {"ignored": False, "upvoted": False, "upvotes_count": 2}


def test_upvote_unknown_issue(env):
    resp = env.client.post("/api/issues/missing/upvote", headers=auth("citizen-1"))
    assert resp.status_code == 404


def test_upvote_write_failure(env):
    env.store.fail_upvote_writes = True
    resp = env.client.post("/api/issues/light/upvote", headers=auth("citizen-1"))
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to update upvote"
    assert env.store.upvotes == set()


# --- Comments ---

def test_comment_lifecycle(env):
    resp = env.client.post("/api/issues/light/comments", json={"text": "  Still broken  "}, headers=auth("citizen-1"))
    assert resp.status_code == 201
    comment = resp.json()
    assert comment["text"] == "Still broken"

    detail = env.client.get("/api/issues/light", headers=auth("citizen-1")).json()
    assert detail["comments_count"] == 1
    assert detail["can_delete_comment_ids"] == [comment["id"]]

    resp = env.client.delete(f"/api/comments/{comment['id']}", headers=auth("citizen-1"))
    assert resp.status_code == 200
    assert resp.json()["message"] == "Comment deleted successfully."
    assert env.store.comments == {}


def test_blank_comment_rejected(env):
    resp = env.client.post("/api/issues/light/comments", json={"text": "   "}, headers=auth("citizen-1"))
    assert resp.status_code == 422


def test_comment_on_unknown_issue(env):
    resp = env.client.post("/api/issues/missing/comments", json={"text": "hello"}, headers=auth("citizen-1"))
    assert resp.status_code == 404


def test_citizen_cannot_delete_someone_elses_comment(env):
    comment = env.client.post("/api/issues/light/comments", json={"text": "mine"}, headers=auth("citizen-1")).json()
    resp = env.client.delete(f"/api/comments/{comment['id']}", headers=auth("citizen-2", language="hi"))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "आपको यह करने की अनुमति नहीं है।"


def test_official_can_delete_any_comment(env):
    comment = env.client.post("/api/issues/light/comments", json={"text": "spam"}, headers=auth("citizen-1")).json()
    resp = env.client.delete(f"/api/comments/{comment['id']}", headers=auth("official-1", Role.OFFICIAL))
    assert resp.status_code == 200


def test_stale_token_role_does_not_grant_moderation(env):
    comment = env.client.post("/api/issues/light/comments", json={"text": "hi"}, headers=auth("citizen-1")).json()
    resp = env.client.delete(f"/api/comments/{comment['id']}", headers=auth("citizen-2", Role.OFFICIAL))
    assert resp.status_code == 403


def test_delete_unknown_comment(env):
    resp = env.client.delete("/api/comments/nope", headers=auth("citizen-1"))
    assert resp.status_code == 404


# --- Posting issues ---

def test_post_issue_with_image_and_location(env):
    resp = env.client.post(
        "/api/issues",
        data={"title": "  Fallen tree ", "location_lat": "12.5", "location_lng": "77.5"},
        files=[("images", ("tree.png", png_bytes(), "image/png"))],
        headers=auth("citizen-1"),
    )
    assert resp.status_code == 201
    issue = resp.json()["issue"]
    assert issue["title"] == "Fallen tree"
    assert issue["location_address"] == "MG Road, Bengaluru"
    assert env.geocoder.calls == [(12.5, 77.5)]
    assert len(issue["images"]) == 1
    assert issue["images"][0].startswith("citizen-1/")
    content, content_type = env.storage.files[issue["images"][0]]
    assert content_type == "image/png"


def test_post_issue_keeps_given_address(env):
    resp = env.client.post(
        "/api/issues",
        data={"title": "Flooding", "location_lat": "1", "location_lng": "2", "location_address": "Market St"},
        headers=auth("citizen-1"),
    )
    assert resp.status_code == 201
    assert resp.json()["issue"]["location_address"] == "Market St"
    assert env.geocoder.calls == []


def test_post_issue_requires_title(env):
    resp = env.client.post("/api/issues", data={"title": "   "}, headers=auth("citizen-1"))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Please enter a title."


def test_post_issue_limits_images(env):
    files = [("images", (f"{i}.png", png_bytes(), "image/png")) for i in range(4)]
    resp = env.client.post("/api/issues", data={"title": "Too many"}, files=files, headers=auth("citizen-1"))
    assert resp.status_code == 400
    assert env.storage.files == {}


def test_post_issue_rejects_non_images(env):
    files = [("images", ("notes.png", b"definitely not a png", "image/png"))]
    resp = env.client.post("/api/issues", data={"title": "Bad upload"}, files=files, headers=auth("citizen-1"))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "One of the files is not a valid image."


def test_post_issue_requires_sign_in(env):
    resp = env.client.post("/api/issues", data={"title": "Anonymous"})
    assert resp.status_code == 401


# --- Storage ---

def test_download_stored_image(env):
    env.storage.files["u/1-x.png"] = (b"\x89PNG...", "image/png")
    resp = env.client.get("/api/storage/issue-images/u/1-x.png")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content == b"\x89PNG..."


def test_download_missing_image(env):
    assert env.client.get("/api/storage/issue-images/u/none.png").status_code == 404
    assert env.client.get("/api/storage/other-bucket/u/none.png").status_code == 404


# --- Auth ---

def test_signup_login_and_settings(env):
    resp = env.client.post("/api/auth/signup", json={"email": "New@Example.com", "password": "secret1", "role": "official"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["email"] == "new@example.com"
    assert body["role"] == "official"
    assert body["token"]

    resp = env.client.post("/api/auth/login", json={"email": "new@example.com", "password": "secret1"})
    assert resp.status_code == 200
    headers = {"Authorization": f"Bearer {resp.json()['token']}"}

    me = env.client.get("/api/auth/me", headers=headers).json()
    assert me["role"] == "official"

    resp = env.client.patch("/api/auth/me", json={"language": "hi"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "सेटिंग्स सफलतापूर्वक सेव की गईं!"
    assert resp.json()["profile"]["language"] == "hi"


def test_signup_cannot_self_assign_admin(env):
    resp = env.client.post("/api/auth/signup", json={"email": "a@example.com", "password": "secret1", "role": "admin"})
    assert resp.status_code == 403


def test_signup_duplicate_email(env):
    payload = {"email": "dup@example.com", "password": "secret1"}
    assert env.client.post("/api/auth/signup", json=payload).status_code == 201
    assert env.client.post("/api/auth/signup", json=payload).status_code == 409


def test_signup_validation(env):
    assert env.client.post("/api/auth/signup", json={"email": "bad", "password": "secret1"}).status_code == 400
    assert env.client.post("/api/auth/signup", json={"email": "ok@example.com", "password": "123"}).status_code == 400


def test_login_with_wrong_password(env):
    env.store.add_profile("x", email="x@example.com", password_hash=get_password_hash("right-one"))
    resp = env.client.post("/api/auth/login", json={"email": "x@example.com", "password": "wrong-one"})
    assert resp.status_code == 401


def test_unsupported_language_setting(env):
    resp = env.client.patch("/api/auth/me", json={"language": "fr"}, headers=auth("citizen-1"))
    assert resp.status_code == 400


# --- Misc ---

def test_translations_endpoint(env):
    assert env.client.get("/api/i18n/hi").json()["home"] == "होम"
    assert env.client.get("/api/i18n/xx").status_code == 404


def test_health_without_database(env):
    data = env.client.get("/api/health").json()
    assert data["status"] == "degraded"


def test_missing_store_answers_503(env):
    env.app.state.store = None
    assert env.client.get("/api/issues/light").status_code == 503


# --- Live feed socket ---

def test_feed_socket_reranks_when_location_arrives(env):
    with env.client.websocket_connect("/ws/feed") as ws:
        first = ws.receive_json()
        assert first["type"] == "feed"
        assert first["ranked_by_distance"] is False

        ws.send_text(json.dumps({"type": "location", "lat": 0.0, "lng": 0.0}))
        second = ws.receive_json()
        assert second["type"] == "feed"
        assert second["ranked_by_distance"] is True
        assert second["issues"][0]["id"] == "light"

        ws.send_text("ping")
        assert ws.receive_json() == {"type": "pong"}


def test_feed_socket_upvote(env):
    token = create_access_token("citizen-1", SECRET, claims={"role": "citizen"})
    with env.client.websocket_connect(f"/ws/feed?token={token}") as ws:
        ws.receive_json()
        ws.send_text(json.dumps({"type": "location_denied"}))
        ws.send_text(json.dumps({"type": "upvote", "issue_id": "pothole"}))

        messages = [ws.receive_json(), ws.receive_json()]
        kinds = {m["type"] for m in messages}
        assert kinds == {"feed", "upvote"}
        upvote = next(m for m in messages if m["type"] == "upvote")
        assert upvote == {"type": "upvote", "issue_id": "pothole", "outcome": "toggled", "upvoted": True}
        feed = next(m for m in messages if m["type"] == "feed")
        assert "pothole" in feed["upvoted_issue_ids"]
