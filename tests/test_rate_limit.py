"""
Sliding-window limiter tests.
"""
import json

import pytest

from app.rate_limit import RATE_LIMITS, SlidingWindowLimiter, client_ip


@pytest.fixture
def limiter():
    return SlidingWindowLimiter("memory://")


# ── Client IP ─────────────────────────────────────────────────────────────────

def test_client_ip_uses_first_forwarded_hop(request_with):
    assert client_ip(request_with({"X-Forwarded-For": "1.2.3.4, 5.6.7.8"})) == "1.2.3.4"


def test_client_ip_falls_back_to_real_ip(request_with):
    assert client_ip(request_with({"X-Real-IP": "9.9.9.9"})) == "9.9.9.9"


def test_client_ip_ignores_blank_forwarded(request_with):
    req = request_with({"X-Forwarded-For": "  , 5.6.7.8", "X-Real-IP": "9.9.9.9"})
    assert client_ip(req) == "9.9.9.9"


def test_client_ip_unknown(request_with):
    assert client_ip(request_with()) == "unknown"


def test_client_ip_passes_real_ip_through_untrimmed(request_with):
    assert client_ip(request_with({"X-Real-IP": " 9.9.9.9 "})) == " 9.9.9.9 "
    assert client_ip(request_with({"X-Real-IP": ""})) == "unknown"


# ── check ─────────────────────────────────────────────────────────────────────

def test_allows_requests_under_the_limit(limiter, request_with):
    req = request_with({"X-Forwarded-For": "127.0.0.1"})
    for _ in range(5):
        assert limiter.check(req, 5, 60_000, "test") is None


def test_blocks_requests_over_the_limit(limiter, request_with):
    req = request_with({"X-Forwarded-For": "127.0.0.1"})
    for _ in range(3):
        limiter.check(req, 3, 60_000, "test")

    resp = limiter.check(req, 3, 60_000, "test")

    assert resp is not None
    assert resp.status_code == 429
    assert resp.headers["X-RateLimit-Limit"] == "3"
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert int(resp.headers["Retry-After"]) > 0
    body = json.loads(resp.body)
    assert body["error"] == "Too many requests. Please try again later."
    assert body["retry_after"] > 0


def test_tracks_ips_independently(limiter, request_with):
    first = request_with({"X-Forwarded-For": "1.2.3.4"})
    second = request_with({"X-Forwarded-For": "5.6.7.8"})
    for _ in range(3):
        limiter.check(first, 3, 60_000, "test")

    assert limiter.check(first, 3, 60_000, "test") is not None
    assert limiter.check(second, 3, 60_000, "test") is None


def test_tracks_buckets_independently(limiter, request_with):
    req = request_with({"X-Forwarded-For": "1.2.3.4"})
    for _ in range(3):
        limiter.check(req, 3, 60_000, "write")

    assert limiter.check(req, 3, 60_000, "write") is not None
    assert limiter.check(req, 3, 60_000, "read") is None


def test_real_ip_requests_share_a_window(limiter, request_with):
    req = request_with({"X-Real-IP": "10.0.0.1"})
    for _ in range(2):
        limiter.check(req, 2, 60_000, "test")
    assert limiter.check(req, 2, 60_000, "test") is not None


def test_reset_clears_windows(limiter, request_with):
    req = request_with({"X-Forwarded-For": "1.2.3.4"})
    for _ in range(2):
        limiter.check(req, 2, 60_000, "test")
    limiter.reset()
    assert limiter.check(req, 2, 60_000, "test") is None


# ── stats ─────────────────────────────────────────────────────────────────────

def test_stats_cover_every_category_at_zero(limiter):
    stats = limiter.stats("192.168.1.1")

    assert [s["prefix"] for s in stats] == ["key_gen", "write", "read"]
    for entry in stats:
        assert entry["used"] == 0
        assert entry["remaining"] == entry["limit"]
        assert entry["resetsAt"] is None


def test_stats_reflect_usage_of_category_bucket(limiter, request_with):
    req = request_with({"X-Forwarded-For": "10.0.0.1"})
    write = RATE_LIMITS["WRITE"]
    for _ in range(2):
        limiter.check(req, write.limit, write.window_ms, "write")

    by_prefix = {s["prefix"]: s for s in limiter.stats("10.0.0.1")}

    assert by_prefix["write"]["used"] == 2
    assert by_prefix["write"]["remaining"] == write.limit - 2
    assert by_prefix["write"]["windowMs"] == write.window_ms
    assert by_prefix["write"]["resetsAt"] is not None
    assert by_prefix["read"]["used"] == 0
    assert limiter.stats("10.0.0.2")[1]["used"] == 0
