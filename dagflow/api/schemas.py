from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# --- Request models ---

class TaskCreate(BaseModel):
    name: str = Field(min_length=1)
    type: str = "noop"
    config: dict[str, Any] = Field(default_factory=dict)
    max_retries: int | None = Field(default=None, ge=0)


class DependencyCreate(BaseModel):
    """``from`` depends on ``to``."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    tasks: list[TaskCreate]
    dependencies: list[DependencyCreate] = Field(default_factory=list)


# --- Response models ---

class DependencyRef(BaseModel):
    id: str
    name: str


class TaskResponse(BaseModel):
    id: str
    name: str
    type: str
    config: dict[str, Any]
    max_retries: int | None = None
    depends_on: list[DependencyRef] = Field(default_factory=list)


class WorkflowSummary(BaseModel):
    id: str
    name: str
    description: str | None = None
    version: int
    created_at: str
    updated_at: str


class WorkflowResponse(WorkflowSummary):
    tasks: list[TaskResponse]


class RunResponse(BaseModel):
    message: str
    execution_id: str = Field(serialization_alias="executionId")


class TaskExecutionResponse(BaseModel):
    id: str
    task_id: str
    name: str
    type: str
    state: str
    retry_count: int
    max_retries: int
    next_retry_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    error: str | None = None


class ExecutionResponse(BaseModel):
    id: str
    workflow_id: str
    workflow_name: str | None = None
    status: str
    started_at: str
    completed_at: str | None = None
    tasks: list[TaskExecutionResponse]
