"""Tests for rule lifecycle, statistics and previews."""
import logging
from datetime import datetime

import pytest

from recurrence_engine.errors import InvalidRule, RuleNotFound
from recurrence_engine.schemas.recurrence import RuleCreate, RuleUpdate
from recurrence_engine.services import rule_service
from recurrence_engine.services.rule_service import RuleService

NOW = datetime(2024, 1, 1, 12, 0)
ANCHOR = datetime(2024, 1, 1, 9, 0)


@pytest.fixture
def service(store):
    return RuleService(store)


class TestCreate:

    def test_anchor_defaults_to_task_due_date(self, service, make_task):
        task = make_task(due_date=ANCHOR)

        rule = service.create_rule(task.id, RuleCreate(period_type="daily", infinite_repeat=True), now=NOW)

        assert rule.id is not None
        assert rule.anchor_date == ANCHOR
        assert rule.last_materialized_at is None

    def test_anchor_falls_back_to_now(self, service, make_task):
        task = make_task()
        rule = service.create_rule(task.id, RuleCreate(period_type="daily", infinite_repeat=True), now=NOW)
        assert rule.anchor_date == NOW

    def test_weekly_days_are_normalized(self, service, make_task):
        task = make_task(due_date=ANCHOR)
        data = RuleCreate(period_type="weekly", repeat_days=["thursday", "monday"], infinite_repeat=True)

        rule = service.create_rule(task.id, data, now=NOW)

        assert rule.repeat_days == ["monday", "thursday"]
        assert rule.describe() == "every 1 week on monday, thursday"

    def test_days_dropped_for_non_weekly(self, service, make_task):
        task = make_task(due_date=ANCHOR)
        data = RuleCreate(period_type="monthly", repeat_days=["monday"], infinite_repeat=True)
        assert service.create_rule(task.id, data, now=NOW).repeat_days == []

    def test_one_rule_per_task(self, service, make_task):
        task = make_task(due_date=ANCHOR)
        service.create_rule(task.id, RuleCreate(period_type="daily", infinite_repeat=True), now=NOW)
        with pytest.raises(InvalidRule):
            service.create_rule(task.id, RuleCreate(period_type="weekly", repeat_days=["monday"]), now=NOW)

    def test_missing_task(self, service):
        with pytest.raises(RuleNotFound):
            service.create_rule(999, RuleCreate(period_type="daily", infinite_repeat=True), now=NOW)

    @pytest.mark.parametrize("data", [
        RuleCreate(period_type="weekly", infinite_repeat=True),
        RuleCreate(period_type="daily"),
        RuleCreate(period_type="daily", end_date=datetime(2023, 12, 1)),
    ])
    def test_invalid_configurations(self, service, make_task, data):
        task = make_task(due_date=ANCHOR)
        with pytest.raises(InvalidRule) as exc_info:
            service.create_rule(task.id, data, now=NOW)
        assert exc_info.value.details["errors"]

    def test_end_date_dropped_for_infinite(self, service, make_task):
        task = make_task(due_date=ANCHOR)
        data = RuleCreate(period_type="daily", infinite_repeat=True, end_date=datetime(2024, 6, 1))
        assert service.create_rule(task.id, data, now=NOW).end_date is None


class TestUpdate:

    def test_update_never_rewinds_cursor(self, service, store, make_rule):
        rule = make_rule(anchor_date=ANCHOR)
        store.advance_cursor(rule.id, None, datetime(2024, 1, 5, 9, 0))

        updated = service.update_rule(rule.id, RuleUpdate(anchor_date=datetime(2023, 12, 1, 9, 0)), now=NOW)

        assert updated.anchor_date == datetime(2023, 12, 1, 9, 0)
        assert updated.last_materialized_at == datetime(2024, 1, 5, 9, 0)

    def test_switching_to_daily_clears_days(self, service, make_rule):
        rule = make_rule(anchor_date=ANCHOR, period_type="weekly", repeat_days=["monday"])

        updated = service.update_rule(rule.id, RuleUpdate(period_type="daily", period_value=2), now=NOW)

        assert updated.period_type == "daily"
        assert updated.period_value == 2
        assert updated.repeat_days == []

    def test_switching_to_weekly_requires_days(self, service, make_rule):
        rule = make_rule(anchor_date=ANCHOR)
        with pytest.raises(InvalidRule):
            service.update_rule(rule.id, RuleUpdate(period_type="weekly"), now=NOW)

    def test_making_rule_finite(self, service, make_rule):
        rule = make_rule(anchor_date=ANCHOR)
        updated = service.update_rule(
            rule.id, RuleUpdate(infinite_repeat=False, end_date=datetime(2024, 2, 1)), now=NOW
        )
        assert not updated.infinite_repeat
        assert updated.end_date == datetime(2024, 2, 1)

    def test_unknown_rule(self, service):
        with pytest.raises(RuleNotFound):
            service.update_rule(999, RuleUpdate(period_value=2), now=NOW)

    def test_delete(self, service, make_rule):
        rule = make_rule(anchor_date=ANCHOR)
        service.delete_rule(rule.id)
        with pytest.raises(RuleNotFound):
            service.delete_rule(rule.id)


class TestReads:

    def test_preview_is_read_only(self, service, store, make_rule, instances):
        rule = make_rule(anchor_date=ANCHOR)

        preview = service.preview_upcoming(rule.id, window_days=7, limit=3, now=NOW)

        assert [occurrence.due_at.day for occurrence in preview] == [2, 3, 4]
        assert instances() == []
        assert store.get_rule(rule.id).last_materialized_at is None

    def test_preview_window_is_bounded(self, service, make_rule):
        rule = make_rule(anchor_date=ANCHOR)
        with pytest.raises(InvalidRule):
            service.preview_upcoming(rule.id, window_days=0, now=NOW)

    def test_upcoming_merges_rules_soonest_first(self, service, make_task, make_rule):
        daily = make_rule(task=make_task(title="Stretch"), anchor_date=datetime(2024, 1, 1, 18, 0))
        weekly = make_rule(
            task=make_task(title="Review", priority="high"),
            anchor_date=ANCHOR,
            period_type="weekly",
            repeat_days=["tuesday"],
        )

        upcoming = service.upcoming_occurrences(window_days=2, limit=10, now=NOW)

        assert [(item["rule_id"], item["due_at"]) for item in upcoming] == [
            (daily.id, datetime(2024, 1, 1, 18, 0)),
            (weekly.id, datetime(2024, 1, 2, 9, 0)),
            (daily.id, datetime(2024, 1, 2, 18, 0)),
        ]
        assert upcoming[1]["title"] == "Review"
        assert upcoming[1]["priority"] == "high"

    def test_upcoming_reports_rules_past_scan_limit(self, service, make_rule, monkeypatch, caplog):
        monkeypatch.setattr(rule_service, "MAX_UPCOMING_RULES", 2)
        oldest = make_rule(anchor_date=ANCHOR)
        make_rule(anchor_date=ANCHOR)
        make_rule(anchor_date=ANCHOR)

        with caplog.at_level(logging.WARNING, logger=rule_service.__name__):
            upcoming = service.upcoming_occurrences(window_days=1, limit=10, now=NOW)

        assert oldest.id not in {item["rule_id"] for item in upcoming}
        assert len(upcoming) == 2
        assert "2 newest of 3 active rules" in caplog.text

    def test_list_pagination(self, service, make_rule):
        for _ in range(3):
            make_rule(anchor_date=ANCHOR)

        result = service.list_rules(page=2, limit=2, now=NOW)

        assert len(result["rules"]) == 1
        assert result["pagination"] == {
            "current_page": 2,
            "total_pages": 2,
            "total_count": 3,
            "has_next": False,
            "has_prev": True,
        }

    def test_stats(self, service, make_rule):
        make_rule(anchor_date=ANCHOR)
        make_rule(anchor_date=ANCHOR)
        make_rule(anchor_date=ANCHOR, period_type="weekly", repeat_days=["monday"])
        make_rule(anchor_date=ANCHOR, infinite_repeat=False, end_date=datetime(2024, 1, 1))

        stats = service.rule_stats(now=NOW)

        assert stats["overview"] == {"total_rules": 4, "active_rules": 3, "expired_rules": 1}
        assert stats["breakdown"] == {"daily": 3, "weekly": 1}
        assert stats["efficiency"]["active_percentage"] == 75
        assert stats["efficiency"]["most_common_type"] == {"type": "daily", "count": 3}
