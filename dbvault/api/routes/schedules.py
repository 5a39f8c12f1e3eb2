from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from dbvault.api.routes.tasks import to_task_response
from dbvault.api.schemas.schedules import ScheduleListResponse, ScheduleRequest, ScheduleResponse
from dbvault.api.schemas.tasks import TaskResponse
from dbvault.backups.service import BackupService
from dbvault.core.errors import BackupConflictError, ScheduleNotFoundError
from dbvault.core.path_safety import PathSafetyError
from dbvault.db.models import Schedule
from dbvault.db.repositories import ScheduleRepository

router = APIRouter(prefix="/schedules", tags=["schedules"])


def get_backup_service(request: Request) -> BackupService:
    return request.app.state.services.service


def get_schedule_repository(request: Request) -> ScheduleRepository:
    return request.app.state.services.schedules


def _to_response(schedule: Schedule, service: BackupService) -> ScheduleResponse:
    return ScheduleResponse.model_validate({**schedule.model_dump(), "running": service.is_running(schedule.id)})


@router.get("", response_model=ScheduleListResponse)
def list_schedules(
    repository: ScheduleRepository = Depends(get_schedule_repository),
    service: BackupService = Depends(get_backup_service),
) -> ScheduleListResponse:
    return ScheduleListResponse(items=[_to_response(item, service) for item in repository.list()])


@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
def create_schedule(request: ScheduleRequest, service: BackupService = Depends(get_backup_service)) -> ScheduleResponse:
    try:
        schedule = service.save_schedule(Schedule.model_validate(request.model_dump()))
    except PathSafetyError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return _to_response(schedule, service)


@router.get("/{schedule_id}", response_model=ScheduleResponse)
def get_schedule(
    schedule_id: str,
    repository: ScheduleRepository = Depends(get_schedule_repository),
    service: BackupService = Depends(get_backup_service),
) -> ScheduleResponse:
    try:
        schedule = repository.get(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_response(schedule, service)


@router.put("/{schedule_id}", response_model=ScheduleResponse)
def update_schedule(
    schedule_id: str,
    request: ScheduleRequest,
    repository: ScheduleRepository = Depends(get_schedule_repository),
    service: BackupService = Depends(get_backup_service),
) -> ScheduleResponse:
    try:
        existing = repository.get(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    updated = Schedule.model_validate(
        {
            **request.model_dump(),
            "id": existing.id,
            "last_run_at": existing.last_run_at,
        }
    )
    try:
        schedule = service.save_schedule(updated)
    except PathSafetyError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return _to_response(schedule, service)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(schedule_id: str, service: BackupService = Depends(get_backup_service)) -> Response:
    try:
        service.delete_schedule(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{schedule_id}/run", response_model=TaskResponse, status_code=status.HTTP_202_ACCEPTED)
def run_schedule_now(schedule_id: str, service: BackupService = Depends(get_backup_service)) -> TaskResponse:
    try:
        task = service.start_manual_run(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BackupConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return to_task_response(task)
