from typing import Optional
from uuid import UUID
from sqlmodel import Field, SQLModel

class UserGpuPermission(SQLModel, table=True):
    __tablename__ = "user_gpu_permissions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: UUID = Field(nullable=False, index=True)
    gpu_id: int = Field(nullable=False)
