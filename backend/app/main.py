import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.api import api_router
from app.core.compute_backend import init_compute_backend, close_compute_backend
from app.core.config import settings
from app.core.deps import create_db_and_tables
from app.core.exceptions import ApiException, api_exception_handler
from app.core.minio_utils import connect_minio
from app.core.rabbitmq_utils import init_rabbitmq, start_audit_queue_consumer, close_rabbitmq

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # 在应用程序启动时执行的代码
    logger.info("Application startup")
    await create_db_and_tables()
    await connect_minio()
    await init_rabbitmq()
    await start_audit_queue_consumer()
    await init_compute_backend(
        settings.COMPUTE_BACKEND_BASE_URL,
        timeout_seconds=settings.COMPUTE_BACKEND_TIMEOUT_SECONDS
    )
    yield
    # 在应用程序关闭时执行的代码
    await close_compute_backend()
    await close_rabbitmq()
    logger.info("Application shutdown")

app = FastAPI(
    title="GPU_Task_Backend",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:5174"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ApiException, api_exception_handler)

app.include_router(api_router, prefix="/api")

@app.get("/")
def read_root():
    """
    根路径。
    """
    return {"message": "Welcome to GPU Task API! Visit /docs for API documentation."}
