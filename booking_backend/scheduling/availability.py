"""
Weekly availability rules of a stylist.

Rules are recurring ``[start_time, end_time)`` windows on a weekday. Active
rules of the same stylist never overlap on the same weekday. Removing a rule
is a soft operation and leaves existing bookings untouched.
"""

import logging
from collections import defaultdict
from datetime import datetime, time

from sqlalchemy.orm import Session

from booking_backend.models.availability import AvailabilityRule
from booking_backend.models.user import User
from booking_backend.scheduling.errors import NotFoundError, PermissionDeniedError, ValidationError
from booking_backend.scheduling.intervals import (
    intervals_overlap,
    normalize_time,
    validate_day_of_week,
    validate_time_range,
)

logger = logging.getLogger(__name__)


def _visible_rules(db: Session, provider_id: int):
    return db.query(AvailabilityRule).filter(
        AvailabilityRule.provider_id == provider_id,
        AvailabilityRule.deleted_at.is_(None),
    )


def get_rules_for_provider(db: Session, provider_id: int, active_only: bool = False) -> list[AvailabilityRule]:
    query = _visible_rules(db, provider_id)
    if active_only:
        query = query.filter(AvailabilityRule.is_active.is_(True))

    return query.order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()


def get_active_rules_by_weekday(db: Session, provider_id: int) -> dict[int, list[AvailabilityRule]]:
    rules_by_weekday: dict[int, list[AvailabilityRule]] = defaultdict(list)
    for rule in get_rules_for_provider(db, provider_id, active_only=True):
        rules_by_weekday[rule.day_of_week].append(rule)
    return dict(rules_by_weekday)


def _require_stylist(db: Session, provider_id: int) -> User:
    provider = db.get(User, provider_id)
    if provider is None or not provider.is_stylist:
        raise NotFoundError('Stylist not found.')
    return provider


def _get_owned_rule(db: Session, provider_id: int, rule_id: int) -> AvailabilityRule:
    rule = db.get(AvailabilityRule, rule_id)
    if rule is None or rule.deleted_at is not None:
        raise NotFoundError('Availability rule not found.')
    if rule.provider_id != provider_id:
        raise PermissionDeniedError('This availability rule belongs to another stylist.')
    return rule


def _check_overlap(
    db: Session,
    provider_id: int,
    day_of_week: int,
    start_time: time,
    end_time: time,
    exclude_rule_id: int | None = None,
) -> None:
    query = _visible_rules(db, provider_id).filter(
        AvailabilityRule.day_of_week == day_of_week,
        AvailabilityRule.is_active.is_(True),
    )
    if exclude_rule_id is not None:
        query = query.filter(AvailabilityRule.id != exclude_rule_id)

    for existing in query.all():
        if intervals_overlap(start_time, end_time, existing.start_time, existing.end_time):
            raise ValidationError('This window overlaps an existing window on the same day.')


def _validated_window(day_of_week: int, start_time: time, end_time: time) -> tuple[time, time]:
    validate_day_of_week(day_of_week)
    start_time = normalize_time(start_time)
    end_time = normalize_time(end_time)
    validate_time_range(start_time, end_time)
    return start_time, end_time


def add_rule(db: Session, provider_id: int, day_of_week: int, start_time: time, end_time: time) -> AvailabilityRule:
    start_time, end_time = _validated_window(day_of_week, start_time, end_time)
    _require_stylist(db, provider_id)
    _check_overlap(db, provider_id, day_of_week, start_time, end_time)

    rule = AvailabilityRule(
        provider_id=provider_id,
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        is_active=True,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)

    logger.info('Added availability rule %s for stylist %s', rule.id, provider_id)
    return rule


def update_rule(
    db: Session,
    provider_id: int,
    rule_id: int,
    day_of_week: int,
    start_time: time,
    end_time: time,
) -> AvailabilityRule:
    start_time, end_time = _validated_window(day_of_week, start_time, end_time)
    rule = _get_owned_rule(db, provider_id, rule_id)
    if rule.is_active:
        _check_overlap(db, provider_id, day_of_week, start_time, end_time, exclude_rule_id=rule.id)

    rule.day_of_week = day_of_week
    rule.start_time = start_time
    rule.end_time = end_time
    db.commit()
    db.refresh(rule)
    return rule


def toggle_rule(db: Session, provider_id: int, rule_id: int) -> AvailabilityRule:
    rule = _get_owned_rule(db, provider_id, rule_id)
    if not rule.is_active:
        _check_overlap(db, provider_id, rule.day_of_week, rule.start_time, rule.end_time, exclude_rule_id=rule.id)

    rule.is_active = not rule.is_active
    db.commit()
    db.refresh(rule)
    return rule


def remove_rule(db: Session, provider_id: int, rule_id: int, now: datetime | None = None) -> None:
    rule = db.get(AvailabilityRule, rule_id)
    if rule is None or rule.deleted_at is not None:
        return
    if rule.provider_id != provider_id:
        raise PermissionDeniedError('This availability rule belongs to another stylist.')

    rule.is_active = False
    rule.deleted_at = now or datetime.now()
    db.commit()

    logger.info('Removed availability rule %s for stylist %s', rule_id, provider_id)
