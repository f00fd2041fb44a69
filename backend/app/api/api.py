from fastapi import APIRouter
from app.api.endpoints import task

api_router = APIRouter()

# 任务生命周期相关接口：/api/tasks/...
api_router.include_router(task.router, prefix="/tasks", tags=["tasks"])
