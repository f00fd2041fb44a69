from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    SECRET_KEY: str = "change-me-in-production-0123456789abcdef"
    ALGORITHM: str = "HS256"

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "gpu_platform"

    MINIO_ACCESS_KEY: str = "minioadmin"
    MINIO_SECRET_KEY: str = "minioadmin"
    MINIO_SERVER: str = "localhost"
    MINIO_PORT: int = 9000
    MINIO_SECURE: bool = False
    MINIO_LOGS_BUCKET: str = "logs"

    RABBITMQ_DEFAULT_USER: str = "guest"
    RABBITMQ_DEFAULT_PASS: str = "guest"
    RABBITMQ_SERVER: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBIT_AUDIT_EXCHANGE_NAME: str = "audit.exchange"
    RABBIT_AUDIT_QUEUE_NAME: str = "audit.queue"
    RABBIT_AUDIT_BINDING_KEY: str = "audit.log"

    # 外部计算后端（真正执行训练/推理的 GPU 服务）
    COMPUTE_BACKEND_BASE_URL: str = "http://localhost:8000"
    COMPUTE_BACKEND_TIMEOUT_SECONDS: float = 30.0
    # 列表刷新时并发轮询的上限，1 表示逐个轮询
    TASK_POLL_CONCURRENCY: int = 8
    # 为 True 时轮询结果不会覆盖已处于终态的任务
    TASK_PROTECT_TERMINAL_STATUS: bool = True

    @property
    def DATABASE_URL(self) -> str:
        # 构建 PostgreSQL 连接字符串
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def MINIO_URL(self) -> str:
        # 构建 MinIO 连接字符串
        return f"{self.MINIO_SERVER}:{self.MINIO_PORT}"

    @property
    def RABBITMQ_URL(self) -> str:
        # 构建 RabbitMQ 连接字符串
        return f"amqp://{self.RABBITMQ_DEFAULT_USER}:{self.RABBITMQ_DEFAULT_PASS}@{self.RABBITMQ_SERVER}:{self.RABBITMQ_PORT}/"

    SQL_ECHO: bool = False # 是否打印 SQL 语句
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file="../env", extra="ignore")

settings = Settings()
