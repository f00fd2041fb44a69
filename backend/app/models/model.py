from uuid import UUID
from sqlmodel import Field, SQLModel

# 模型表由模型管理模块维护，这里只做存在性校验
class Model(SQLModel, table=True):
    __tablename__ = "models"

    id: UUID = Field(primary_key=True)
    name: str = Field(max_length=100)
