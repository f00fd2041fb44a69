from uuid import UUID
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.dataset import Dataset

async def dataset_exists(db_session: AsyncSession, dataset_id: UUID) -> bool:
    """
    检查数据集是否存在。
    """
    statement = select(Dataset.id).where(Dataset.id == dataset_id)
    result = await db_session.exec(statement)
    return result.first() is not None
