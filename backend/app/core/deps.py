import logging
from typing import AsyncGenerator

from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, async_sessionmaker

from app.core.config import settings # 从 config.py 导入设置对象

logger = logging.getLogger(__name__)

async_engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.SQL_ECHO,
    pool_recycle=3600 # 可选：用于解决 PostgreSQL 长期连接中断问题
)

# expire_on_commit=False：提交后仍可读取任务字段，用于返回响应和审计
AsyncSessionLocal = async_sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=async_engine,
    class_=AsyncSession
)

async def create_db_and_tables():
    """
    创建所有 SQLModel 定义的数据库表。
    这个函数在应用启动时（main.py 的 lifespan）调用一次。
    """
    # 确保所有 SQLModel 模型都在这里被导入，以便 SQLModel 能够发现它们。
    logger.info("Creating database tables asynchronously...")
    from app.models import task, audit_log, model, dataset, gpu_permission  # noqa: F401
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created (if not already existing).")

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    一个依赖项生成器，用于在每个请求中提供一个数据库会话。
    它确保会话在使用完毕后关闭。
    """
    async with AsyncSessionLocal() as session:
        yield session
