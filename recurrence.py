import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from database import commit_or_raise
from errors import LedgerError
from models import Frequency, RecurringRule, RuleStatus, Transaction, TransactionStatus


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamp_to_month(year: int, month: int, desired_day: int) -> date:
    return date(year, month, min(desired_day, days_in_month(year, month)))


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return clamp_to_month(year, month, desired_day)


def next_occurrence(
    current: date, frequency: Frequency, anchor_day: Optional[int] = None
) -> date:
    if frequency == Frequency.daily:
        return current + timedelta(days=1)
    if frequency == Frequency.weekly:
        return current + timedelta(weeks=1)
    desired_day = anchor_day or current.day
    if frequency == Frequency.monthly:
        return _add_months(current, 1, desired_day=desired_day)
    return _add_months(current, 12, desired_day=desired_day)


def initial_next_run_date(
    start_date: date,
    frequency: Frequency,
    day_of_month: Optional[int] = None,
    *,
    today: date,
) -> date:
    """First date, inclusive, at which a new rule is due.

    The rule is due at ``max(start_date, today)``, moved to ``day_of_month``
    for monthly rules. An occurrence already written for that date by the
    transaction form is skipped by catch-up, not posted twice.
    """
    base = max(start_date, today)
    if frequency == Frequency.monthly and day_of_month:
        candidate = clamp_to_month(base.year, base.month, day_of_month)
        if candidate < base:
            candidate = _add_months(base, 1, desired_day=day_of_month)
        return candidate
    return base


@dataclass(frozen=True)
class CatchUpResult:
    processed: int


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def due_rules(self, user_id: int, today: date) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .where(
                RecurringRule.user_id == user_id,
                RecurringRule.status == RuleStatus.active,
                RecurringRule.next_run_date <= today,
            )
            .order_by(RecurringRule.next_run_date, RecurringRule.id)
        )
        return list(self.session.scalars(stmt).all())

    def process_due_rules(
        self,
        user_id: int,
        today: Optional[date] = None,
        *,
        max_occurrences: int = 1,
    ) -> CatchUpResult:
        today = today or local_today()
        processed = 0
        for rule in self.due_rules(user_id, today):
            processed += self.catch_up_rule(
                rule, today, max_occurrences=max_occurrences
            )
        logger.info(
            f"catch_up: user_id={user_id} today={today.isoformat()} processed={processed}"
        )
        return CatchUpResult(processed=processed)

    def catch_up_rule(
        self,
        rule: RecurringRule,
        today: Optional[date] = None,
        *,
        max_occurrences: int = 1,
    ) -> int:
        today = today or local_today()
        posted = 0
        while (
            rule.status == RuleStatus.active
            and rule.next_run_date <= today
            and posted < max_occurrences
        ):
            # The end date itself never produces an occurrence.
            if rule.end_date and rule.next_run_date >= rule.end_date:
                rule.status = RuleStatus.cancelled
                commit_or_raise(self.session)
                logger.info(f"rule_cancelled: rule_id={rule.id} reason=past_end")
                break

            occurrence_date = rule.next_run_date
            try:
                created = self._post_occurrence(rule, occurrence_date, today)
            except LedgerError as exc:
                logger.warning(
                    f"catch_up_skipped: rule_id={rule.id} "
                    f"date={occurrence_date.isoformat()} error={exc}"
                )
                break
            if created:
                posted += 1

            next_date = next_occurrence(
                occurrence_date, rule.frequency, rule.day_of_month
            )
            if rule.end_date and next_date >= rule.end_date:
                rule.status = RuleStatus.cancelled
                logger.info(f"rule_cancelled: rule_id={rule.id} reason=end_reached")
            else:
                rule.next_run_date = next_date
            commit_or_raise(self.session)
        return posted

    def _post_occurrence(
        self, rule: RecurringRule, occurrence_date: date, today: date
    ) -> bool:
        from schemas import TransactionIn
        from services import TransactionService

        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == rule.user_id,
                Transaction.recurring_rule_id == rule.id,
                Transaction.date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        data = TransactionIn(
            account_id=rule.account_id,
            category_id=rule.category_id,
            description=rule.description,
            amount_cents=rule.amount_cents,
            date=occurrence_date,
            status=TransactionStatus.paid,
            is_recurring=False,
        )
        TransactionService(self.session, rule.user_id).create(
            data, recurring_rule_id=rule.id, today=today
        )
        return True
