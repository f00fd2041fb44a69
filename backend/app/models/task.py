from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import UUID, uuid4
from enum import Enum

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, JSON, DateTime

# 未指定数据集时使用的占位 ID（推理任务等不需要数据集）
NO_DATASET_ID = UUID("00000000-0000-0000-0000-000000000000")

class TaskType(str, Enum):
    TRAINING = "TRAINING"
    INFERENCE = "INFERENCE"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"


class TaskBase(SQLModel):
    name: str = Field(min_length=1, max_length=100, nullable=False)
    type: TaskType = Field(nullable=False)
    model_id: UUID = Field(nullable=False)

class Task(TaskBase, table=True):
    __tablename__ = "tasks"

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    dataset_id: UUID = Field(default=NO_DATASET_ID, nullable=False)
    config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: TaskStatus = Field(
        default=TaskStatus.PENDING,
        nullable=False,
        index=True
    )
    created_by: UUID = Field(nullable=False, index=True)
    # 外部计算后端返回的任务 ID，仅在提交成功后设置
    external_task_id: Optional[str] = Field(default=None, max_length=100)
    # 乐观并发版本号，每次状态写入都会递增
    version: int = Field(default=1, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True)
    )
