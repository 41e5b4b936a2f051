from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from cadence.config_manager import ConfigManager
from cadence.errors import CadenceError
from cadence.series import SeriesMutator
from cadence.task_store import TaskStore

logger = logging.getLogger(__name__)


class RecurrenceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "none"
    every: Any = 1
    until: str | None = None
    days_of_week: Any = Field(default_factory=list, alias="daysOfWeek")


class TaskCreateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    status: str | None = None
    due_date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    recurrence: RecurrenceRequest | None = None


class TaskUpdateRequest(TaskCreateRequest):
    is_recurring: bool | None = None


class AppContext:
    def __init__(self, config_path: str, db_path: str | None = None) -> None:
        self.config_manager = ConfigManager(config_path)
        config = self.config_manager.load_effective()
        self.task_store = TaskStore(db_path or config.storage.db_path)
        self.mutator = SeriesMutator(self.task_store, max_occurrences=config.scheduling.max_occurrences)


def _request_payload(request: BaseModel) -> dict[str, Any]:
    payload = request.model_dump(exclude_unset=True)
    if payload.get("title") is None:
        payload.pop("title", None)
    return payload


def _require_owner(owner: str | None) -> str:
    owner_id = str(owner or "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="X-Owner-Id header is required")
    return owner_id


def create_app() -> FastAPI:
    config_path = os.getenv("CADENCE_CONFIG_PATH", "config.yaml")
    context = AppContext(config_path=config_path)

    app = FastAPI(title="Cadence", version="0.1.0")
    app.state.context = context

    @app.exception_handler(CadenceError)
    async def _cadence_error(_request: Request, exc: CadenceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Task store failure: %s", exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/tasks")
    def list_tasks(title: str | None = None, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner = _require_owner(x_owner_id)
        tasks = app.state.context.mutator.list_tasks(owner, title=title)
        return {"tasks": [task.to_dict() for task in tasks]}

    @app.get("/api/tasks/{task_id}")
    def get_task(task_id: str, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner = _require_owner(x_owner_id)
        return app.state.context.mutator.get_task(owner, task_id).to_dict()

    @app.post("/api/tasks", status_code=201)
    def create_task(request: TaskCreateRequest, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner = _require_owner(x_owner_id)
        result = app.state.context.mutator.create_task(owner, _request_payload(request))
        return result.to_dict()

    @app.put("/api/tasks/{task_id}")
    def update_task(
        task_id: str,
        request: TaskUpdateRequest,
        x_owner_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        owner = _require_owner(x_owner_id)
        result = app.state.context.mutator.update_task(owner, task_id, _request_payload(request))
        return result.to_dict()

    @app.delete("/api/tasks/{task_id}")
    def delete_task(task_id: str, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner = _require_owner(x_owner_id)
        deleted = app.state.context.mutator.delete_task(owner, task_id)
        return {"message": "task deleted", "id": deleted.id}

    return app
