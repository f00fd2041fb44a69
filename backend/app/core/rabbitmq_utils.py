import asyncio
import json
import logging
from typing import Optional

import aio_pika
from aio_pika.abc import AbstractRobustConnection, AbstractChannel, AbstractExchange, AbstractQueue
from aio_pika.exchange import ExchangeType

from app.core.config import settings
from app.core.deps import AsyncSessionLocal
from app.schemas.audit_log import AuditEvent

logger = logging.getLogger(__name__)

rabbit_connection: Optional[AbstractRobustConnection] = None
rabbit_channel: Optional[AbstractChannel] = None
audit_exchange: Optional[AbstractExchange] = None
audit_queue: Optional[AbstractQueue] = None

# 启动时连接 RabbitMQ 的最大尝试次数；失败后审计走数据库直写
CONNECT_ATTEMPTS = 3
CONNECT_RETRY_SECONDS = 5


def is_rabbitmq_ready() -> bool:
    return rabbit_channel is not None and not rabbit_channel.is_closed and audit_exchange is not None


async def publish_audit_message(event: AuditEvent) -> None:
    """
    将审计事件发送到审计交换机。

    Raises:
        RuntimeError: RabbitMQ 尚未初始化。
        aio_pika 的各类异常：发送失败。
    """
    if not is_rabbitmq_ready():
        raise RuntimeError("RabbitMQ 审计交换机未就绪，请先调用 init_rabbitmq() 方法。")
    message = aio_pika.Message(
        body=event.model_dump_json().encode("utf-8"),
        content_type="application/json",
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
    )
    await audit_exchange.publish(message, routing_key=settings.RABBIT_AUDIT_BINDING_KEY)
    logger.debug(f"审计消息已发送: operation={event.operation_type.value}, resource_id={event.resource_id}")


async def on_audit_message(message: aio_pika.abc.AbstractIncomingMessage):
    """
    审计消息处理回调函数：解析消息并写入 audit_logs 表。
    """
    from app.crud import crud_audit_log
    body = message.body.decode()
    try:
        event = AuditEvent.model_validate(json.loads(body))
        async with AsyncSessionLocal() as session:
            await crud_audit_log.create_audit_log(session, event)
            await session.commit()
        await message.ack()
        logger.info(
            f"[Audit Consumer] 审计日志已写入: operation={event.operation_type.value}, "
            f"user_id={event.user_id}, resource_id={event.resource_id}"
        )
    except Exception as e:
        logger.error(f"[Audit Consumer] Error processing message '{body}': {e}")
        # 处理失败时 NACK 且不重新入队，通常会进入死信队列
        await message.nack(requeue=False)


async def start_audit_queue_consumer():
    """
    创建并启动监听审计队列的消费者。
    """
    if not is_rabbitmq_ready() or audit_queue is None:
        logger.warning("RabbitMQ 连接或审计队列未就绪，审计消费者未启动。")
        return
    try:
        # no_ack=False 表示手动确认消息
        await audit_queue.consume(on_audit_message, no_ack=False)
        logger.info(f"[Audit Consumer] Consumer for '{audit_queue.name}' started. Waiting for messages...")
    except Exception as e:
        logger.error(f"[Audit Consumer] Error starting consumer: {e}")


async def init_rabbitmq():
    global rabbit_connection, rabbit_channel, audit_exchange, audit_queue
    if rabbit_connection is None:
        for attempt in range(1, CONNECT_ATTEMPTS + 1):
            logger.info(f"正在连接 RabbitMQ 服务器: {settings.RABBITMQ_SERVER}:{settings.RABBITMQ_PORT} (第 {attempt} 次)...")
            try:
                rabbit_connection = await aio_pika.connect_robust(settings.RABBITMQ_URL)
                break
            except (aio_pika.exceptions.AMQPConnectionError, OSError) as e:
                logger.warning(f"连接 RabbitMQ 失败: {e}")
                if attempt < CONNECT_ATTEMPTS:
                    await asyncio.sleep(CONNECT_RETRY_SECONDS)
        if rabbit_connection is None:
            logger.error("无法连接 RabbitMQ，审计日志将直接写入数据库。")
            return
        logger.info("成功连接到 RabbitMQ 服务器！")

    if rabbit_channel is None:
        rabbit_channel = await rabbit_connection.channel()

    if audit_exchange is None:
        audit_exchange = await rabbit_channel.declare_exchange(
            settings.RABBIT_AUDIT_EXCHANGE_NAME,
            ExchangeType.DIRECT,
            durable=True
        )

    if audit_queue is None:
        audit_queue = await rabbit_channel.declare_queue(
            settings.RABBIT_AUDIT_QUEUE_NAME,
            durable=True,
            auto_delete=False,
            exclusive=False
        )
    await audit_queue.bind(audit_exchange, routing_key=settings.RABBIT_AUDIT_BINDING_KEY)
    logger.info("RabbitMQ 初始化完成，审计交换机和队列已就绪。")


async def close_rabbitmq():
    global rabbit_connection, rabbit_channel, audit_exchange, audit_queue
    if rabbit_channel is not None and not rabbit_channel.is_closed:
        await rabbit_channel.close()
    if rabbit_connection is not None:
        await rabbit_connection.close()
        logger.info("RabbitMQ 连接已关闭")
    rabbit_connection = None
    rabbit_channel = None
    audit_exchange = None
    audit_queue = None
