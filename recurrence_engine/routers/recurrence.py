"""Recurrence router: scheduler controls, manual processing, rule lifecycle and previews."""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from typing import Any, Dict, List, Optional

from recurrence_engine.errors import InvalidRule, OverlapSkipped, PersistenceError, RuleNotFound
from recurrence_engine.models.period import PeriodType
from recurrence_engine.schemas.recurrence import (
    OccurrenceResponse,
    ProcessingRunResponse,
    RuleCreate,
    RuleListResponse,
    RuleResponse,
    RuleUpdate,
    UpcomingOccurrenceResponse,
)
from recurrence_engine.services.rule_service import RuleService
from recurrence_engine.services.scheduler import RecurrenceScheduler

router = APIRouter(tags=["Recurrence"])  # No prefix since main.py adds /api/recurrence


def get_scheduler(request: Request) -> RecurrenceScheduler:
    """Dependency for the process-wide scheduler."""
    return request.app.state.scheduler


def get_rule_service(request: Request) -> RuleService:
    """Dependency for getting RuleService instance."""
    return RuleService(request.app.state.store)


def _not_found(error: RuleNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)


def _bad_request(error: InvalidRule) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "Invalid repeat configuration", "errors": error.details.get("errors", [error.message])}
    )


def _unavailable(error: PersistenceError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error.message)


# Scheduler controls

@router.get("/scheduler", response_model=Dict[str, Any])
async def scheduler_status(scheduler: RecurrenceScheduler = Depends(get_scheduler)):
    """Report whether the background scheduler is running, its next tick and metrics."""
    return scheduler.status()


@router.post("/scheduler/start", response_model=Dict[str, Any])
async def start_scheduler(scheduler: RecurrenceScheduler = Depends(get_scheduler)):
    """Start the background scheduler; no-op if it is already running."""
    started = scheduler.start()
    return {"message": "Scheduler started" if started else "Scheduler already running", "running": scheduler.running}


@router.post("/scheduler/stop", response_model=Dict[str, Any])
def stop_scheduler(scheduler: RecurrenceScheduler = Depends(get_scheduler)):
    """Stop the background scheduler, letting an in-flight run finish."""
    stopped = scheduler.stop()
    return {"message": "Scheduler stopped" if stopped else "Scheduler was not running", "running": scheduler.running}


@router.post("/process", response_model=Dict[str, Any])
def process_now(
    scheduler: RecurrenceScheduler = Depends(get_scheduler),
    user_id: Optional[str] = Query(None, description="Only process rules whose task belongs to this user"),
):
    """Run a processing pass now. Per-rule errors are reported in the summary, not as a failure."""
    try:
        run = scheduler.trigger_now(user_id=user_id)
    except OverlapSkipped as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except PersistenceError as e:
        raise _unavailable(e)

    return {
        "message": f"Processed {run.rules_evaluated} recurrence rules, created {run.occurrences_materialized} tasks",
        "summary": ProcessingRunResponse(**run.to_dict()),
    }


# Rules

@router.get("/rules", response_model=RuleListResponse)
def list_rules(
    service: RuleService = Depends(get_rule_service),
    user_id: Optional[str] = Query(None, description="Only rules whose task belongs to this user"),
    period_type: Optional[PeriodType] = Query(None, description="Filter by period: daily, weekly, monthly, yearly"),
    active: Optional[bool] = Query(True, description="true: active rules, false: expired rules"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """List recurrence rules with filtering and pagination."""
    try:
        return service.list_rules(
            user_id=user_id,
            period_type=period_type.value if period_type else None,
            active=active,
            page=page,
            limit=limit,
        )
    except PersistenceError as e:
        raise _unavailable(e)


@router.get("/rules/stats", response_model=Dict[str, Any])
def rule_stats(
    service: RuleService = Depends(get_rule_service),
    user_id: Optional[str] = Query(None),
):
    """Counts of total, active and expired rules with a per-type breakdown."""
    try:
        return service.rule_stats(user_id=user_id)
    except PersistenceError as e:
        raise _unavailable(e)


@router.get("/rules/{rule_id}", response_model=RuleResponse)
def get_rule(rule_id: int, service: RuleService = Depends(get_rule_service)):
    try:
        return service.get_rule(rule_id)
    except RuleNotFound as e:
        raise _not_found(e)


@router.put("/rules/{rule_id}", response_model=RuleResponse)
def update_rule(rule_id: int, rule_data: RuleUpdate, service: RuleService = Depends(get_rule_service)):
    """Update period, days, end condition or anchor of a rule."""
    try:
        return service.update_rule(rule_id, rule_data)
    except RuleNotFound as e:
        raise _not_found(e)
    except InvalidRule as e:
        raise _bad_request(e)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: int, service: RuleService = Depends(get_rule_service)):
    try:
        service.delete_rule(rule_id)
    except RuleNotFound as e:
        raise _not_found(e)


@router.get("/rules/{rule_id}/upcoming", response_model=List[OccurrenceResponse])
def preview_upcoming(
    rule_id: int,
    service: RuleService = Depends(get_rule_service),
    days: int = Query(30, ge=1, le=365, description="Days ahead to look"),
    limit: int = Query(20, ge=1, le=100),
):
    """Preview a rule's next occurrences without creating anything."""
    try:
        return service.preview_upcoming(rule_id, window_days=days, limit=limit)
    except RuleNotFound as e:
        raise _not_found(e)


@router.get("/tasks/{task_id}/rule", response_model=RuleResponse)
def get_task_rule(task_id: int, service: RuleService = Depends(get_rule_service)):
    try:
        return service.get_rule_for_task(task_id)
    except RuleNotFound as e:
        raise _not_found(e)


@router.post("/tasks/{task_id}/rule", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_task_rule(task_id: int, rule_data: RuleCreate, service: RuleService = Depends(get_rule_service)):
    """Make a task repeat."""
    try:
        return service.create_rule(task_id, rule_data)
    except RuleNotFound as e:
        raise _not_found(e)
    except InvalidRule as e:
        raise _bad_request(e)


@router.get("/upcoming", response_model=List[UpcomingOccurrenceResponse])
def upcoming_occurrences(
    service: RuleService = Depends(get_rule_service),
    user_id: Optional[str] = Query(None),
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(20, ge=1, le=100),
):
    """Upcoming occurrences across all active rules, soonest first."""
    try:
        return service.upcoming_occurrences(window_days=days, limit=limit, user_id=user_id)
    except PersistenceError as e:
        raise _unavailable(e)
