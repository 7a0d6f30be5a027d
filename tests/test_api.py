from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from reviewfeed_service.config import settings
from reviewfeed_service.dependencies import get_current_user, get_feed_service, get_quality_service
from reviewfeed_service.exceptions import InvalidCursorError, StoreAuthError
from reviewfeed_service.main import app, get_following_ids
from reviewfeed_service.pipeline import get_pipeline
from reviewfeed_service.schemas import FeedResponse, LiveFeedResponse, User, VisitedRestaurant


@pytest.fixture
def feed_service():
    service = MagicMock()
    service.get_first_page = AsyncMock(return_value=FeedResponse(items=[], status="empty"))
    service.get_page = AsyncMock(return_value=FeedResponse(items=[], next_cursor=None))
    service.refresh = AsyncMock(return_value=FeedResponse(items=[], status="empty"))
    service.get_user_reviews = AsyncMock(return_value=FeedResponse(items=[], status="empty"))
    service.get_dining_history = AsyncMock(return_value=[])
    service.live_feed = MagicMock(return_value=LiveFeedResponse(items=[], version=7, state="streaming"))
    return service


@pytest.fixture
def quality_service():
    service = MagicMock()
    service.score_restaurant = AsyncMock(return_value=82)
    return service


@pytest.fixture
def client(feed_service, quality_service):
    app.dependency_overrides[get_current_user] = lambda: User(id="u1", username="jane")
    app.dependency_overrides[get_following_ids] = lambda: ["u2"]
    app.dependency_overrides[get_feed_service] = lambda: feed_service
    app.dependency_overrides[get_quality_service] = lambda: quality_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _token(**claims):
    payload = {"sub": "u1", "username": "jane"}
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── Health ───────────────────────────────────────────────────────────────


def test_health():
    resp = TestClient(app).get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


# ── Feed ─────────────────────────────────────────────────────────────────


def test_first_page(client, feed_service):
    resp = client.get("/api/v1/feed")

    assert resp.status_code == 200
    assert resp.json()["status"] == "empty"
    feed_service.get_first_page.assert_awaited_once_with(["u2"])


def test_next_page_with_cursor(client, feed_service):
    resp = client.get("/api/v1/feed", params={"cursor": "abc", "limit": 5})

    assert resp.status_code == 200
    feed_service.get_page.assert_awaited_once_with(5, "abc", ["u2"])


def test_page_size_is_bounded(client):
    resp = client.get("/api/v1/feed", params={"limit": settings.MAX_PAGE_SIZE + 1})
    assert resp.status_code == 422


def test_invalid_cursor_is_bad_request(client, feed_service):
    feed_service.get_page.side_effect = InvalidCursorError("Invalid cursor: 'abc'")

    resp = client.get("/api/v1/feed", params={"cursor": "abc"})

    assert resp.status_code == 400


def test_store_session_failure_is_unauthorized(client, feed_service):
    feed_service.get_first_page.side_effect = StoreAuthError("session expired")

    resp = client.get("/api/v1/feed")

    assert resp.status_code == 401


def test_unexpected_failure_is_server_error(client, feed_service):
    feed_service.refresh.side_effect = RuntimeError("bug")

    resp = client.post("/api/v1/feed/refresh")

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to refresh feed"


def test_live_feed(client):
    resp = client.get("/api/v1/feed/live")

    assert resp.status_code == 200
    assert resp.json() == {"items": [], "version": 7, "state": "streaming"}


def test_refresh(client, feed_service):
    resp = client.post("/api/v1/feed/refresh")

    assert resp.status_code == 200
    feed_service.refresh.assert_awaited_once_with(["u2"])


# ── Restaurants ──────────────────────────────────────────────────────────


def test_quality_score(client, quality_service):
    resp = client.get("/api/v1/restaurants/rest1/quality-score")

    assert resp.status_code == 200
    assert resp.json() == {"restaurant_id": "rest1", "quality_score": 82}
    quality_service.score_restaurant.assert_awaited_once_with("rest1")


def test_missing_quality_score_is_null(client, quality_service):
    quality_service.score_restaurant.return_value = None

    resp = client.get("/api/v1/restaurants/rest1/quality-score")

    assert resp.json()["quality_score"] is None


def test_recompute_quality_score(client, quality_service):
    resp = client.post("/api/v1/restaurants/rest1/quality-score/recompute")

    assert resp.status_code == 200
    quality_service.score_restaurant.assert_awaited_once_with("rest1", persist=True)


# ── Users ────────────────────────────────────────────────────────────────


def test_user_reviews(client, feed_service):
    resp = client.get("/api/v1/users/alice/reviews", params={"limit": 10})

    assert resp.status_code == 200
    feed_service.get_user_reviews.assert_awaited_once_with("alice", 10, ["u2"])


def test_visited_restaurants(client, feed_service):
    feed_service.get_dining_history.return_value = [
        VisitedRestaurant(
            id="rest1",
            name="Casa",
            visit_count=2,
            total_reviews=3,
            average_rating=8.3,
            last_visit=datetime(2024, 5, 1, tzinfo=timezone.utc),
        )
    ]

    resp = client.get("/api/v1/users/alice/restaurants")

    assert resp.status_code == 200
    assert resp.json()[0]["name"] == "Casa"
    feed_service.get_dining_history.assert_awaited_once_with("alice")


# ── Internal ─────────────────────────────────────────────────────────────


def test_cache_stats(client):
    p = MagicMock()
    p.restaurant_cache.stats.return_value = {"size": 1, "hits": 2, "misses": 1, "hit_rate": 66.7}
    p.profile_cache.stats.return_value = {"size": 0, "hits": 0, "misses": 0, "hit_rate": 0.0}
    app.dependency_overrides[get_pipeline] = lambda: p

    resp = client.get("/api/v1/cache/stats")

    assert resp.status_code == 200
    assert resp.json()["restaurants"]["hits"] == 2


# ── Authentication ───────────────────────────────────────────────────────


@pytest.fixture
def auth_client(quality_service):
    app.dependency_overrides[get_quality_service] = lambda: quality_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_valid_token_is_accepted(auth_client):
    resp = auth_client.get(
        "/api/v1/restaurants/rest1/quality-score",
        headers={"Authorization": f"Bearer {_token()}"},
    )
    assert resp.status_code == 200


def test_invalid_token_is_rejected(auth_client):
    resp = auth_client.get(
        "/api/v1/restaurants/rest1/quality-score",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert resp.status_code == 401


def test_token_without_username_is_rejected(auth_client):
    resp = auth_client.get(
        "/api/v1/restaurants/rest1/quality-score",
        headers={"Authorization": f"Bearer {_token(username=None)}"},
    )
    assert resp.status_code == 401


def test_missing_token_is_rejected(auth_client):
    resp = auth_client.get("/api/v1/restaurants/rest1/quality-score")
    assert resp.status_code in (401, 403)
