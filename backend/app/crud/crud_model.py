from uuid import UUID
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.model import Model

async def model_exists(db_session: AsyncSession, model_id: UUID) -> bool:
    """
    检查模型是否存在。
    """
    statement = select(Model.id).where(Model.id == model_id)
    result = await db_session.exec(statement)
    return result.first() is not None
