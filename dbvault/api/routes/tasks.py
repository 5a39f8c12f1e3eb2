from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from dbvault.api.schemas.tasks import TaskListResponse, TaskResponse
from dbvault.backups.monitor import TaskMonitor
from dbvault.backups.types import TaskStatus
from dbvault.core.errors import BackupConflictError, TaskNotFoundError

router = APIRouter(prefix="/tasks", tags=["tasks"])


def get_task_monitor(request: Request) -> TaskMonitor:
    return request.app.state.services.monitor


def to_task_response(task: TaskStatus) -> TaskResponse:
    return TaskResponse.model_validate(asdict(task))


@router.get("", response_model=TaskListResponse)
def list_tasks(monitor: TaskMonitor = Depends(get_task_monitor)) -> TaskListResponse:
    return TaskListResponse(
        active=[to_task_response(task) for task in monitor.active_tasks()],
        recent=[to_task_response(task) for task in monitor.recent_tasks()],
    )


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(task_id: str, monitor: TaskMonitor = Depends(get_task_monitor)) -> TaskResponse:
    try:
        task = monitor.get_task(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return to_task_response(task)


@router.post("/{task_id}/pause", response_model=TaskResponse)
def pause_task(task_id: str, monitor: TaskMonitor = Depends(get_task_monitor)) -> TaskResponse:
    try:
        task = monitor.pause_task(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BackupConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return to_task_response(task)


@router.post("/{task_id}/resume", response_model=TaskResponse)
def resume_task(task_id: str, monitor: TaskMonitor = Depends(get_task_monitor)) -> TaskResponse:
    try:
        task = monitor.resume_task(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BackupConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return to_task_response(task)


@router.post("/{task_id}/cancel", response_model=TaskResponse)
def cancel_task(task_id: str, monitor: TaskMonitor = Depends(get_task_monitor)) -> TaskResponse:
    try:
        task = monitor.cancel_task(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return to_task_response(task)
