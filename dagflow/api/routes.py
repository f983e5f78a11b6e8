import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from dagflow.api.schemas import (
    DependencyRef,
    ExecutionResponse,
    RunResponse,
    TaskExecutionResponse,
    TaskResponse,
    WorkflowCreate,
    WorkflowResponse,
    WorkflowSummary,
)
from dagflow.core.errors import NotFoundError, ValidationError
from dagflow.core.models import TaskSpec
from dagflow.db import repository
from dagflow.db.database import get_db
from dagflow.db.tables import Workflow
from dagflow.engine.supervisor import ExecutionSupervisor

router = APIRouter()


def get_supervisor(request: Request) -> ExecutionSupervisor:
    return request.app.state.supervisor


def _workflow_response(db: Session, wf: Workflow) -> WorkflowResponse:
    tasks = repository.get_tasks(db, wf.id)
    deps = repository.get_dependency_map(db, wf.id)
    names = {t.id: t.name for t in tasks}
    return WorkflowResponse(
        id=wf.id,
        name=wf.name,
        description=wf.description,
        version=wf.version,
        created_at=wf.created_at,
        updated_at=wf.updated_at,
        tasks=[
            TaskResponse(
                id=t.id,
                name=t.name,
                type=t.type,
                config=json.loads(t.config or "{}"),
                max_retries=t.max_retries,
                depends_on=[
                    DependencyRef(id=dep_id, name=names[dep_id])
                    for dep_id in deps.get(t.id, [])
                ],
            )
            for t in tasks
        ],
    )


@router.get("/health")
def health():
    return {"status": "ok"}


# ── Workflow definitions ────────────────────────────────────────────────────


@router.post("/api/", response_model=WorkflowResponse, status_code=201)
def create_workflow(workflow: WorkflowCreate, db: Session = Depends(get_db)):
    if repository.get_workflow_by_name(db, workflow.name):
        raise HTTPException(
            status_code=409, detail=f"Workflow '{workflow.name}' already exists"
        )

    try:
        wf = repository.create_workflow(
            db,
            name=workflow.name,
            description=workflow.description,
            tasks=[
                TaskSpec(
                    name=t.name,
                    type=t.type,
                    config=t.config,
                    max_retries=t.max_retries,
                )
                for t in workflow.tasks
            ],
            dependencies=[(d.from_, d.to) for d in workflow.dependencies],
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"errors": e.errors})

    return _workflow_response(db, wf)


@router.get("/api/", response_model=list[WorkflowSummary])
def list_workflows(
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return [
        WorkflowSummary(
            id=w.id,
            name=w.name,
            description=w.description,
            version=w.version,
            created_at=w.created_at,
            updated_at=w.updated_at,
        )
        for w in repository.list_workflows(db, limit=limit, offset=offset)
    ]


# ── Executions ──────────────────────────────────────────────────────────────


@router.get("/api/executions/{execution_id}", response_model=ExecutionResponse)
def get_execution(execution_id: str, db: Session = Depends(get_db)):
    execution = repository.get_execution(db, execution_id)
    if not execution:
        raise HTTPException(
            status_code=404, detail=f"Workflow execution '{execution_id}' not found"
        )

    wf = repository.get_workflow(db, execution.workflow_id)
    tasks = {t.id: t for t in repository.get_tasks(db, execution.workflow_id)}
    return ExecutionResponse(
        id=execution.id,
        workflow_id=execution.workflow_id,
        workflow_name=wf.name if wf else None,
        status=execution.status,
        started_at=execution.started_at,
        completed_at=execution.completed_at,
        tasks=[
            TaskExecutionResponse(
                id=te.id,
                task_id=te.task_id,
                name=tasks[te.task_id].name,
                type=tasks[te.task_id].type,
                state=te.state,
                retry_count=te.retry_count,
                max_retries=te.max_retries,
                next_retry_at=te.next_retry_at,
                started_at=te.started_at,
                completed_at=te.completed_at,
                error=te.error,
            )
            for te in repository.get_task_executions(db, execution_id)
        ],
    )


@router.get("/api/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(workflow_id: str, db: Session = Depends(get_db)):
    wf = repository.get_workflow(db, workflow_id)
    if not wf:
        raise HTTPException(
            status_code=404, detail=f"Workflow '{workflow_id}' not found"
        )
    return _workflow_response(db, wf)


@router.post("/api/{workflow_id}/run", response_model=RunResponse, status_code=202)
async def trigger_run(
    workflow_id: str,
    db: Session = Depends(get_db),
    supervisor: ExecutionSupervisor = Depends(get_supervisor),
):
    try:
        execution = repository.create_execution(
            db, workflow_id, default_max_retries=supervisor.policy.max_retries
        )
    except NotFoundError:
        raise HTTPException(
            status_code=404, detail=f"Workflow '{workflow_id}' not found"
        )

    supervisor.start(execution.id)
    return RunResponse(message="Workflow execution started", execution_id=execution.id)
