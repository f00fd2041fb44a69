from uuid import UUID
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.gpu_permission import UserGpuPermission

async def get_gpu_ids_by_user_id(db_session: AsyncSession, user_id: UUID) -> set[int]:
    """
    获取用户被授权使用的 GPU 编号集合。
    """
    statement = select(UserGpuPermission.gpu_id).where(UserGpuPermission.user_id == user_id)
    result = await db_session.exec(statement)
    return set(result.all())
