import logging
from typing import Optional
from uuid import UUID

import aiohttp
from miniopy_async import Minio
from miniopy_async.error import S3Error

from app.core.config import settings

logger = logging.getLogger(__name__)

minio_client: Optional[Minio] = None

async def get_minio_client() -> Minio:
    """提供已创建的 MinIO 客户端实例"""
    client = await connect_minio()
    if not client:
        raise ValueError("MinIO 客户端未初始化，请检查配置")
    return client

async def connect_minio() -> Optional[Minio]:
    """
    连接到 MinIO 服务器。

    Returns:
        Minio: 连接成功的 MinIO 客户端对象，如果连接失败则返回 None。
    """
    global minio_client
    if minio_client is not None:
        return minio_client
    try:
        client = Minio(
            endpoint=settings.MINIO_URL,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE
        )
        logger.info(f"正在连接到 MinIO 服务器: {settings.MINIO_URL} ...")
        # 列出桶以验证连接是否成功
        await client.list_buckets()
        minio_client = client
        logger.info("成功连接到 MinIO 服务器！")
    except S3Error as e:
        logger.error(f"连接 MinIO 失败: {e}")
    except Exception as e:
        logger.error(f"连接 MinIO 时发生错误: {e}")
    return minio_client

def task_log_object_name(task_id: UUID) -> str:
    return f"{task_id}.log"

async def fetch_task_log_from_minio(client: Minio, task_id: UUID) -> Optional[str]:
    """
    从日志桶中读取任务日志。

    Args:
        client (Minio): 已连接的异步 MinIO 客户端实例。
        task_id (UUID): 本地任务 ID，日志对象名为 "<task_id>.log"。

    Returns:
        Optional[str]: 日志文本；对象不存在或读取失败时返回 None。
    """
    object_name = task_log_object_name(task_id)
    try:
        async with aiohttp.ClientSession() as session:
            response = await client.get_object(
                settings.MINIO_LOGS_BUCKET,
                object_name,
                session=session
            )
            try:
                data = await response.read()
            finally:
                response.close()
        return data.decode("utf-8", errors="replace")
    except S3Error as e:
        logger.warning(f"读取任务 {task_id} 的日志失败: {e}")
        return None
    except Exception as e:
        logger.warning(f"读取任务 {task_id} 的日志时发生错误: {e}")
        return None
