from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from dagflow.db.database import Base


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (UniqueConstraint("workflow_id", "name"),)

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    config = Column(Text, nullable=False, default="{}")
    max_retries = Column(Integer, nullable=True)
    position = Column(Integer, nullable=False, default=0)


class TaskDependency(Base):
    __tablename__ = "task_dependencies"

    task_id = Column(String, ForeignKey("tasks.id"), primary_key=True)
    depends_on_task_id = Column(String, ForeignKey("tasks.id"), primary_key=True)


class WorkflowExecution(Base):
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    status = Column(String, nullable=False, default="RUNNING")
    started_at = Column(String, nullable=False)
    completed_at = Column(String, nullable=True)


class TaskExecution(Base):
    __tablename__ = "task_executions"

    id = Column(String, primary_key=True)
    workflow_execution_id = Column(
        String, ForeignKey("workflow_executions.id"), nullable=False
    )
    task_id = Column(String, ForeignKey("tasks.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    state = Column(String, nullable=False, default="PENDING")
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(String, nullable=True)
    started_at = Column(String, nullable=True)
    completed_at = Column(String, nullable=True)
    error = Column(Text, nullable=True)
