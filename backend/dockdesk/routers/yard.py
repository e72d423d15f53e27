"""API routes for dock check-in, assignment and yard status."""
from __future__ import annotations

from datetime import date
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from dockdesk.core.auth import DOCK_MANAGER_ROLES, YardContext, get_yard_context, require_roles
from dockdesk.core.errors import (
    AppointmentLocked,
    DockBlocked,
    DockDeskError,
    DuplicateAppointment,
    DuplicateCheckIn,
    InvalidAppointmentCode,
    InvalidPickupNumber,
    InvalidReason,
    MissingAppointmentReference,
    RequiresConfirmation,
    StaleWrite,
    UnknownDock,
)
from dockdesk.core.logging import logger
from dockdesk.models.yard import (
    AppointmentCreateRequest,
    AppointmentUpdateRequest,
    BlockDockRequest,
    CheckInRequest,
    DockAssignmentRequest,
    DockBoardResponse,
    DockState,
    DockStatus,
    LoadMetrics,
    LoadRecord,
    LoadStatusTransitionRequest,
    ScheduledAppointment,
)
from dockdesk.services.yard_engine import yard_engine
from dockdesk.services.yard_state import yard_state_store

router = APIRouter(prefix="/yard", tags=["yard"])

_ERROR_STATUS = {
    DockBlocked: 409,
    RequiresConfirmation: 409,
    StaleWrite: 409,
    DuplicateCheckIn: 409,
    DuplicateAppointment: 409,
    AppointmentLocked: 409,
    UnknownDock: 404,
    InvalidReason: 422,
    InvalidAppointmentCode: 422,
    InvalidPickupNumber: 422,
    MissingAppointmentReference: 422,
}


def _raise_domain_error(exc: DockDeskError) -> NoReturn:
    raise HTTPException(status_code=_ERROR_STATUS.get(type(exc), 400), detail=exc.to_detail())


def _idempotency_lookup(context: YardContext, operation: str, key: str | None):
    if not key:
        return None
    return yard_state_store.get_idempotent(context.yard_id, f"{operation}:{key.strip()}")


def _idempotency_store(context: YardContext, operation: str, key: str | None, response: dict):
    if not key:
        return
    yard_state_store.set_idempotent(context.yard_id, f"{operation}:{key.strip()}", response)


@router.post("/check-ins", response_model=LoadRecord)
def check_in(
    request: CheckInRequest,
    context: YardContext = Depends(get_yard_context),
):
    try:
        return yard_engine.check_in(request, yard_id=context.yard_id, actor=context.actor)
    except DockDeskError as exc:
        _raise_domain_error(exc)
    except Exception as exc:
        logger.error("Failed to check in driver", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/check-ins")
def daily_log(
    day: Optional[date] = Query(default=None, alias="date"),
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    return yard_engine.daily_log(context.yard_id, day=day)


@router.get("/loads/{load_id}", response_model=LoadRecord)
def get_load(
    load_id: str,
    context: YardContext = Depends(get_yard_context),
):
    try:
        return yard_engine.get_load(context.yard_id, load_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Load not found")


@router.get("/loads/{load_id}/metrics", response_model=LoadMetrics)
def get_load_metrics(
    load_id: str,
    context: YardContext = Depends(get_yard_context),
):
    try:
        return yard_engine.load_metrics(yard_engine.get_load(context.yard_id, load_id))
    except KeyError:
        raise HTTPException(status_code=404, detail="Load not found")


@router.get("/loads/{load_id}/timeline")
def get_load_timeline(
    load_id: str,
    context: YardContext = Depends(get_yard_context),
):
    try:
        return yard_engine.timeline(context.yard_id, load_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Load not found")


@router.post("/loads/{load_id}/status", response_model=LoadRecord)
def transition_load_status(
    load_id: str,
    request: LoadStatusTransitionRequest,
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    try:
        return yard_engine.transition_load_status(
            load_id=load_id,
            request=request,
            yard_id=context.yard_id,
            actor=context.actor,
        )
    except DockDeskError as exc:
        _raise_domain_error(exc)
    except KeyError:
        raise HTTPException(status_code=404, detail="Load not found")
    except Exception as exc:
        logger.error("Failed to transition load status", load_id=load_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/docks", response_model=DockBoardResponse)
def get_dock_board(
    status: Optional[DockStatus] = Query(default=None),
    context: YardContext = Depends(get_yard_context),
):
    return yard_engine.dock_board(context.yard_id, status=status)


@router.get("/docks/{dock_number}", response_model=DockState)
def check_dock(
    dock_number: str,
    load_id: Optional[str] = Query(default=None),
    context: YardContext = Depends(get_yard_context),
):
    try:
        return yard_engine.check_dock(context.yard_id, dock_number, exclude_load_id=load_id)
    except DockDeskError as exc:
        _raise_domain_error(exc)


@router.post("/docks/assign")
def assign_dock(
    request: DockAssignmentRequest,
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = _idempotency_lookup(context, f"assign_dock:{request.load_id}", idempotency_key)
    if cached:
        return cached
    try:
        response = yard_engine.assign_dock(request, yard_id=context.yard_id, actor=context.actor)
        _idempotency_store(context, f"assign_dock:{request.load_id}", idempotency_key, response)
        return response
    except DockDeskError as exc:
        _raise_domain_error(exc)
    except KeyError:
        raise HTTPException(status_code=404, detail="Load not found")
    except Exception as exc:
        logger.error("Failed to assign dock", load_id=request.load_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/docks/{dock_number}/block")
def block_dock(
    dock_number: str,
    request: BlockDockRequest,
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    try:
        entry = yard_engine.block_dock(context.yard_id, dock_number, request.reason, actor=context.actor)
    except DockDeskError as exc:
        _raise_domain_error(exc)
    return entry.model_dump(mode="json")


@router.delete("/docks/{dock_number}/block")
def unblock_dock(
    dock_number: str,
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    try:
        return yard_engine.unblock_dock(context.yard_id, dock_number, actor=context.actor)
    except DockDeskError as exc:
        _raise_domain_error(exc)


@router.get("/appointments")
def list_appointments(
    day: Optional[date] = Query(default=None, alias="date"),
    context: YardContext = Depends(get_yard_context),
):
    return yard_engine.schedule.list_day(context.yard_id, day=day)


@router.get("/appointments/counts")
def appointment_counts(
    day: Optional[date] = Query(default=None, alias="date"),
    context: YardContext = Depends(get_yard_context),
):
    return yard_engine.schedule.slot_counts(context.yard_id, day=day)


@router.get("/appointments/find", response_model=ScheduledAppointment)
def find_appointment(
    reference: str = Query(..., min_length=1),
    context: YardContext = Depends(get_yard_context),
):
    appointment = yard_engine.schedule.find(context.yard_id, reference)
    if appointment is None:
        raise HTTPException(status_code=404, detail="No upcoming appointment for that reference")
    return appointment


@router.post("/appointments", response_model=ScheduledAppointment)
def create_appointment(
    request: AppointmentCreateRequest,
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    try:
        return yard_engine.schedule.create(context.yard_id, request, actor=context.actor)
    except DockDeskError as exc:
        _raise_domain_error(exc)


@router.put("/appointments/{appointment_id}", response_model=ScheduledAppointment)
def update_appointment(
    appointment_id: str,
    request: AppointmentUpdateRequest,
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    try:
        return yard_engine.schedule.update(context.yard_id, appointment_id, request, actor=context.actor)
    except DockDeskError as exc:
        _raise_domain_error(exc)
    except KeyError:
        raise HTTPException(status_code=404, detail="Appointment not found")


@router.delete("/appointments/{appointment_id}")
def delete_appointment(
    appointment_id: str,
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    try:
        return yard_engine.schedule.delete(context.yard_id, appointment_id, actor=context.actor)
    except DockDeskError as exc:
        _raise_domain_error(exc)
    except KeyError:
        raise HTTPException(status_code=404, detail="Appointment not found")


@router.get("/notifications")
def list_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    context: YardContext = Depends(require_roles(*DOCK_MANAGER_ROLES)),
):
    items = yard_state_store.list_outbound_messages(context.yard_id, limit=limit)
    return {"items": items, "count": len(items)}
