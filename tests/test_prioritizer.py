"""Tests for issue scoring and remediation order."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from linkguard.links.networks import classify
from linkguard.links.types import ContentItem, HealthCheckResult, LinkStatus
from linkguard.revenue.prioritizer import (
    Issue,
    build_issues,
    fix_first,
    group_by_content,
    group_by_destination,
    issue_stats,
    prioritize,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _issue(url, status, loss, views=1000, content_id="c1", **kwargs):
    return Issue(
        url=url,
        status=status,
        content_id=content_id,
        view_count=views,
        estimated_loss=Decimal(loss),
        **kwargs,
    )


def test_build_issues_scores_problem_links():
    item = ContentItem(
        content_id="vid1",
        body="",
        view_count=120000,
        published_at=NOW - timedelta(days=720),
        title="Desk setup",
    )
    dead = classify("https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20")
    fine = classify("https://www.amazon.com/dp/B09B8V1LZ3?tag=chan-20")
    results = {
        dead.url: HealthCheckResult(url=dead.url, status=LinkStatus.NOT_FOUND, reason="gone"),
        fine.url: HealthCheckResult(url=fine.url, status=LinkStatus.OK, reason="ok"),
    }

    issues = build_issues([(item, [dead, fine])], results, now=NOW)

    assert len(issues) == 1
    assert issues[0].url == dead.url
    assert issues[0].estimated_loss == Decimal("135.00")
    assert issues[0].content_title == "Desk setup"
    assert issues[0].identifier == "B08N5WRWNW"


def test_links_without_results_are_skipped():
    item = ContentItem(content_id="v", body="", view_count=10, published_at=NOW)
    link = classify("https://www.amazon.com/dp/B08N5WRWNW")
    assert build_issues([(item, [link])], {}, now=NOW) == []


def test_prioritize_orders_by_loss_then_views_then_status():
    issues = [
        _issue("https://a", LinkStatus.OOS, "10.00", views=500),
        _issue("https://b", LinkStatus.NOT_FOUND, "50.00"),
        _issue("https://c", LinkStatus.OOS, "10.00", views=900),
        _issue("https://d", LinkStatus.MISSING_TAG, "10.00", views=900),
    ]
    ordered = [i.url for i in prioritize(issues)]
    assert ordered == ["https://b", "https://d", "https://c", "https://a"]


def test_prioritize_excludes_unknown_by_default():
    issues = [
        _issue("https://a", LinkStatus.UNKNOWN, "99.00"),
        _issue("https://b", LinkStatus.OOS, "1.00"),
    ]
    assert [i.url for i in prioritize(issues)] == ["https://b"]
    assert [i.url for i in prioritize(issues, include_unknown=True)] == ["https://a", "https://b"]


def test_prioritize_excludes_fixed():
    issues = [
        _issue("https://a", LinkStatus.NOT_FOUND, "5.00", is_fixed=True),
        _issue("https://b", LinkStatus.NOT_FOUND, "1.00"),
    ]
    assert [i.url for i in prioritize(issues)] == ["https://b"]


def test_fix_first_limits():
    issues = [_issue(f"https://x/{n}", LinkStatus.NOT_FOUND, str(n)) for n in range(10)]
    top = fix_first(issues, limit=3)
    assert [i.url for i in top] == ["https://x/9", "https://x/8", "https://x/7"]


def test_group_by_destination_sums_loss():
    issues = [
        _issue("https://shared", LinkStatus.NOT_FOUND, "4.00", content_id="c1"),
        _issue("https://shared", LinkStatus.NOT_FOUND, "4.00", content_id="c2"),
        _issue("https://single", LinkStatus.NOT_FOUND, "6.00", content_id="c3"),
    ]
    groups = group_by_destination(issues)
    assert list(groups) == ["https://shared", "https://single"]
    assert len(groups["https://shared"]) == 2


def test_group_by_content():
    issues = [
        _issue("https://a", LinkStatus.OOS, "1.00", content_id="c1"),
        _issue("https://b", LinkStatus.NOT_FOUND, "3.00", content_id="c2"),
        _issue("https://c", LinkStatus.NOT_FOUND, "2.00", content_id="c1"),
    ]
    groups = group_by_content(issues)
    assert list(groups) == ["c2", "c1"]
    assert [i.url for i in groups["c1"]] == ["https://c", "https://a"]


def test_issue_stats_separates_unverified_loss():
    issues = [
        _issue("https://a", LinkStatus.NOT_FOUND, "10.00", content_id="c1"),
        _issue("https://b", LinkStatus.MISSING_TAG, "2.50", content_id="c2"),
        _issue("https://c", LinkStatus.UNKNOWN, "7.00", content_id="c3"),
    ]
    stats = issue_stats(issues)
    assert stats["total"] == 3
    assert stats["confirmed"] == 2
    assert stats["total_estimated_loss"] == Decimal("12.50")
    assert stats["unverified_loss"] == Decimal("7.00")
    assert stats["affected_items"] == 2
    assert stats["by_status"]["NOT_FOUND"] == 1
    assert list(stats["by_status"])[0] == "MISSING_TAG"
