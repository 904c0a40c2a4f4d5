"""Tests for the HTTP API."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from linkguard.api.deps import get_cache, get_health_checker
from linkguard.main import app
from linkguard.verify.cache import VerificationCache
from linkguard.verify.fetchers import FetchedPage, LinkFetcher
from linkguard.verify.health_checker import HealthChecker

DEAD = "https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20"


class GoneFetcher(LinkFetcher):
    async def fetch(self, url):
        return FetchedPage(url=url, http_status=404, final_url=url)


@pytest.fixture
def client():
    cache = VerificationCache()
    checker = HealthChecker(fetcher=GoneFetcher(), cache=cache, concurrency=2, timeout=5.0)
    app.dependency_overrides[get_health_checker] = lambda: checker
    app.dependency_overrides[get_cache] = lambda: cache
    # No context manager: skips the lifespan (database and scheduler)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_public_audit_uses_conservative_profile(client):
    published = (datetime.now(timezone.utc) - timedelta(days=720)).isoformat()
    response = client.post(
        "/api/audit",
        json={
            "items": [
                {
                    "content_id": "vid1",
                    "body": f"Get it here {DEAD}",
                    "view_count": 120000,
                    "published_at": published,
                }
            ]
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["links_checked"] == 1
    assert data["issues"][0]["status"] == "NOT_FOUND"
    # 5000 views * 1% * 1.5% * $45 * 1.0 * 3% commission
    assert data["monthly_loss"] == pytest.approx(1.01)
    assert data["breakdown"]["dead_links"]["count"] == 1
    assert data["results"][0]["url"] == DEAD
    assert data["disclosures"] == [
        {
            "content_id": "vid1",
            "status": "MISSING",
            "affiliate_link_count": 1,
            "text": None,
            "issue": "No affiliate disclosure found. Add one above the fold.",
        }
    ]


def test_public_audit_rejects_empty_request(client):
    response = client.post("/api/audit", json={"items": []})
    assert response.status_code == 422


def test_audit_unavailable_before_startup():
    response = TestClient(app).post(
        "/api/audit",
        json={"items": [{"content_id": "v", "body": DEAD, "published_at": "2024-01-01T00:00:00Z"}]},
    )
    assert response.status_code == 503


def test_replacement_link(client):
    response = client.post(
        "/api/links/replacement",
        json={
            "original_url": "https://www.amazon.co.uk/dp/B08N5WRWNW?tag=old-21",
            "credentials": {"amazon_tag": "mine-21"},
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["network"] == "amazon"
    assert data["url"] == "https://www.amazon.co.uk/dp/B08N5WRWNW?tag=mine-21"


def test_replacement_refusal_lists_missing(client):
    response = client.post(
        "/api/links/replacement",
        json={"original_url": DEAD, "credentials": {}},
    )

    data = response.json()
    assert data["ok"] is False
    assert data["url"] is None
    assert data["missing"] == ["amazon_tag"]


def test_cache_stats(client):
    response = client.get("/api/cache/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["total_entries"] == 0
    assert data["ttl_hours"] == 24
