"""Rule service: recurrence rule lifecycle, statistics and read-only previews."""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from recurrence_engine.errors import InvalidRule, RuleNotFound
from recurrence_engine.models.period import PeriodType, parse_weekdays
from recurrence_engine.models.recurrence_rule import RecurrenceRule
from recurrence_engine.schemas.recurrence import RuleCreate, RuleUpdate
from recurrence_engine.services.occurrence_calculator import Occurrence, compute_occurrences
from recurrence_engine.services.recurrence_store import RecurrenceStore
from recurrence_engine.services.recurrence_validator import RecurrenceValidator
from recurrence_engine.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Upper bound on rules scanned when merging previews across rules
MAX_UPCOMING_RULES = 500


def _raise_if_invalid(result: Dict[str, Any]):
    if not result["valid"]:
        raise InvalidRule("; ".join(result["errors"]), details={"errors": result["errors"]})
    for warning in result["warnings"]:
        logger.warning(f"Recurrence rule warning: {warning}")


def _day_values(days) -> List[str]:
    return [day.value for day in parse_weekdays(getattr(d, "value", d) for d in days)]


class RuleService:
    """Service class for recurrence rule create/update/delete and previews."""

    def __init__(self, store: RecurrenceStore):
        self.store = store

    def get_rule(self, rule_id: int) -> RecurrenceRule:
        rule = self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFound(f"Recurrence rule {rule_id} not found", details={"rule_id": rule_id})
        return rule

    def get_rule_for_task(self, task_id: int) -> RecurrenceRule:
        rule = self.store.get_rule_for_task(task_id)
        if rule is None:
            raise RuleNotFound(f"Task {task_id} has no recurrence rule", details={"task_id": task_id})
        return rule

    def create_rule(self, task_id: int, data: RuleCreate, now: Optional[datetime] = None) -> RecurrenceRule:
        """Attach a rule to a task. One rule per task; the anchor defaults to the task's due date."""
        now = to_naive_utc(now) or utcnow()

        task = self.store.get_task(task_id)
        if task is None:
            raise RuleNotFound(f"Task {task_id} not found", details={"task_id": task_id})
        if self.store.get_rule_for_task(task_id) is not None:
            raise InvalidRule(
                "This task already has a recurrence rule. Use update instead.",
                details={"task_id": task_id}
            )

        end_date = to_naive_utc(data.end_date)
        _raise_if_invalid(RecurrenceValidator.validate_rule_config(
            data.period_type, data.period_value, data.repeat_days, end_date, data.infinite_repeat, now
        ))

        period_type = PeriodType(data.period_type)
        rule = RecurrenceRule(
            task_id=task_id,
            period_type=period_type.value,
            period_value=data.period_value,
            repeat_days=_day_values(data.repeat_days) if period_type is PeriodType.WEEKLY else [],
            end_date=None if data.infinite_repeat else end_date,
            infinite_repeat=data.infinite_repeat,
            anchor_date=to_naive_utc(data.anchor_date) or task.due_date or now,
        )
        rule = self.store.upsert_rule(rule)
        logger.info(f"Task {task_id} will now repeat {rule.describe()} (rule {rule.id})")
        return rule

    def update_rule(self, rule_id: int, data: RuleUpdate, now: Optional[datetime] = None) -> RecurrenceRule:
        """
        Apply a partial update.

        The cursor is left alone: if the anchor moves, occurrences resume from
        ``max(anchor, cursor)``, so nothing already handled is created again.
        """
        now = to_naive_utc(now) or utcnow()
        rule = self.get_rule(rule_id)
        changes = data.model_dump(exclude_unset=True)

        period_type = PeriodType(changes.get("period_type") or rule.period_type)
        period_value = changes.get("period_value") or rule.period_value
        repeat_days = changes["repeat_days"] if changes.get("repeat_days") is not None else rule.repeat_days
        infinite_repeat = changes["infinite_repeat"] if changes.get("infinite_repeat") is not None else rule.infinite_repeat
        end_date = to_naive_utc(changes["end_date"]) if "end_date" in changes else rule.end_date

        if period_type is not PeriodType.WEEKLY:
            repeat_days = []
        _raise_if_invalid(RecurrenceValidator.validate_rule_config(
            period_type, period_value, repeat_days, end_date, infinite_repeat, now,
            require_future_end="end_date" in changes or "infinite_repeat" in changes,
        ))

        rule.period_type = period_type.value
        rule.period_value = period_value
        rule.repeat_days = _day_values(repeat_days)
        rule.infinite_repeat = infinite_repeat
        rule.end_date = None if infinite_repeat else end_date
        if changes.get("anchor_date") is not None:
            rule.anchor_date = to_naive_utc(changes["anchor_date"])

        rule = self.store.upsert_rule(rule)
        logger.info(f"Rule {rule.id} updated: repeats {rule.describe()}")
        return rule

    def delete_rule(self, rule_id: int):
        if not self.store.delete_rule(rule_id):
            raise RuleNotFound(f"Recurrence rule {rule_id} not found", details={"rule_id": rule_id})
        logger.info(f"Rule {rule_id} deleted")

    def list_rules(
        self,
        user_id: Optional[str] = None,
        period_type: Optional[str] = None,
        active: Optional[bool] = True,
        page: int = 1,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """List rules with filters and pagination."""
        now = to_naive_utc(now) or utcnow()
        page = max(page, 1)
        rules, total = self.store.list_rules(
            now,
            user_id=user_id,
            period_type=period_type,
            active=active,
            offset=(page - 1) * limit,
            limit=limit,
        )
        total_pages = (total + limit - 1) // limit if limit else 0
        return {
            "rules": rules,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_count": total,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    def rule_stats(self, user_id: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Overview counts, per-type breakdown and the most common period type."""
        now = to_naive_utc(now) or utcnow()
        counts = self.store.count_rules(now, user_id=user_id)
        total = counts["total"]

        most_common = {"type": "none", "count": 0}
        for period_type, count in sorted(counts["by_type"].items()):
            if count > most_common["count"]:
                most_common = {"type": period_type, "count": count}

        return {
            "overview": {
                "total_rules": total,
                "active_rules": counts["active"],
                "expired_rules": counts["expired"],
            },
            "breakdown": counts["by_type"],
            "efficiency": {
                "active_percentage": round(counts["active"] / total * 100) if total else 0,
                "most_common_type": most_common,
            },
        }

    def preview_upcoming(
        self,
        rule_id: int,
        window_days: int = 30,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> List[Occurrence]:
        """Occurrences of one rule in ``(now, now + window_days]``. Read-only; nothing is materialized."""
        _raise_if_invalid(RecurrenceValidator.validate_preview_window(window_days, limit))
        now = to_naive_utc(now) or utcnow()
        rule = self.get_rule(rule_id)
        return compute_occurrences(rule, from_=now, to=now + timedelta(days=window_days), limit=limit)

    def upcoming_occurrences(
        self,
        window_days: int = 30,
        limit: int = 20,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Upcoming occurrences across all active rules, soonest first."""
        _raise_if_invalid(RecurrenceValidator.validate_preview_window(window_days, limit))
        now = to_naive_utc(now) or utcnow()
        until = now + timedelta(days=window_days)

        rules, total = self.store.list_rules(now, user_id=user_id, active=True, limit=MAX_UPCOMING_RULES)
        if total > MAX_UPCOMING_RULES:
            logger.warning(
                f"Upcoming preview covers the {MAX_UPCOMING_RULES} newest of {total} active rules; older rules are left out"
            )
        upcoming = []
        for rule in rules:
            occurrences = compute_occurrences(rule, from_=now, to=until, limit=limit)
            if not occurrences:
                continue
            task = self.store.get_task(rule.task_id)
            for occurrence in occurrences:
                upcoming.append({
                    "rule_id": rule.id,
                    "task_id": rule.task_id,
                    "title": task.title if task else "",
                    "priority": task.priority if task else "medium",
                    "due_at": occurrence.due_at,
                    "period_type": rule.period_type,
                    "period_value": rule.period_value,
                })

        upcoming.sort(key=lambda item: (item["due_at"], item["rule_id"]))
        return upcoming[:limit]
