from uuid import UUID
from sqlmodel import Field, SQLModel

# 数据集表由数据集管理模块维护，这里只做存在性校验
class Dataset(SQLModel, table=True):
    __tablename__ = "datasets"

    id: UUID = Field(primary_key=True)
    name: str = Field(max_length=100, index=True)
