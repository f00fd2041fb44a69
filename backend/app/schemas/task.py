from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID
from app.models.task import TaskBase, TaskStatus, TaskType

class TaskCreate(TaskBase):
    dataset_id: Optional[UUID] = None
    gpu_ids: Optional[List[int]] = None
    config: Optional[Dict[str, Any]] = None

class TaskCreateDB(TaskBase):
    dataset_id: UUID
    config: Dict[str, Any] = Field(default_factory=dict)
    created_by: UUID

class TaskPublic(SQLModel):
    id: UUID
    name: str
    type: TaskType
    status: TaskStatus
    model_id: UUID
    dataset_id: UUID
    config: Dict[str, Any]
    created_by: UUID
    external_task_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class TaskMetricsPublic(SQLModel):
    task_id: UUID
    epoch: int
    loss: float
    accuracy: float
    timestamp: datetime

class TaskChartPublic(SQLModel):
    task_id: UUID
    chart_url: str
