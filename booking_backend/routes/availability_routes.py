from datetime import date, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import require_roles
from booking_backend.database import get_db
from booking_backend.models.user import ROLE_STYLIST, User
from booking_backend.routes.http_errors import ensure_database_ready, translate_errors
from booking_backend.scheduling.service import SchedulingService, get_scheduling_service

router = APIRouter(tags=['availability'])

DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class AvailabilityRuleRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minutes(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)


class AvailabilityRuleResponse(BaseModel):
    id: int
    provider_id: int
    day_of_week: int
    day_name: str
    start_time: time
    end_time: time
    is_active: bool


class SlotResponse(BaseModel):
    date: date
    start_time: time
    end_time: time

    class Config:
        from_attributes = True


def to_rule_response(rule) -> AvailabilityRuleResponse:
    return AvailabilityRuleResponse(
        id=rule.id,
        provider_id=rule.provider_id,
        day_of_week=rule.day_of_week,
        day_name=DAY_NAMES[rule.day_of_week],
        start_time=rule.start_time,
        end_time=rule.end_time,
        is_active=rule.is_active,
    )


@router.get('/rules', response_model=list[AvailabilityRuleResponse])
def list_my_rules(
    current_user: User = Depends(require_roles(ROLE_STYLIST)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        rules = scheduling.get_rules_for_provider(db, current_user.id)
        return [to_rule_response(rule) for rule in rules]


@router.get('/providers/{provider_id}/rules', response_model=list[AvailabilityRuleResponse])
def list_provider_rules(
    provider_id: int,
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        rules = scheduling.get_rules_for_provider(db, provider_id, active_only=True)
        return [to_rule_response(rule) for rule in rules]


@router.post('/rules', response_model=AvailabilityRuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    data: AvailabilityRuleRequest,
    current_user: User = Depends(require_roles(ROLE_STYLIST)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        rule = scheduling.add_rule(db, current_user.id, data.day_of_week, data.start_time, data.end_time)
        return to_rule_response(rule)


@router.put('/rules/{rule_id}', response_model=AvailabilityRuleResponse)
def update_rule(
    rule_id: int,
    data: AvailabilityRuleRequest,
    current_user: User = Depends(require_roles(ROLE_STYLIST)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        rule = scheduling.update_rule(
            db,
            current_user.id,
            rule_id,
            data.day_of_week,
            data.start_time,
            data.end_time,
        )
        return to_rule_response(rule)


@router.post('/rules/{rule_id}/toggle', response_model=AvailabilityRuleResponse)
def toggle_rule(
    rule_id: int,
    current_user: User = Depends(require_roles(ROLE_STYLIST)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        return to_rule_response(scheduling.toggle_rule(db, current_user.id, rule_id))


@router.delete('/rules/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_rule(
    rule_id: int,
    current_user: User = Depends(require_roles(ROLE_STYLIST)),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        scheduling.remove_rule(db, current_user.id, rule_id)


@router.get('/providers/{provider_id}/slots', response_model=list[SlotResponse])
def list_available_slots(
    provider_id: int,
    service_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date | None = Query(default=None),
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    ensure_database_ready()

    with translate_errors(db):
        slots = scheduling.list_available_slots(db, provider_id, service_id, date_from, date_to or date_from)
        return [SlotResponse.model_validate(slot) for slot in slots]
