from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict

# 外部计算后端的响应结构，未列出的字段一律忽略

class BackendTrainRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    task_id: Optional[str] = None
    task_type: Optional[str] = None
    gpu_count: Optional[int] = None
    gpu_ids: Optional[List[int]] = None
    training_config: Optional[Dict[str, Any]] = None
    model_path: Optional[str] = None
    output_dir: Optional[str] = None
    config_path: Optional[str] = None

class BackendTrainResponse(BaseModel):
    """POST /api/train 与 /api/infer 的响应"""
    model_config = ConfigDict(extra="ignore")

    message: Optional[str] = None
    gpu_allocated: Optional[List[int]] = None
    request: Optional[BackendTrainRequest] = None

class BackendTaskStatus(BaseModel):
    """GET /api/tasks 响应中单个任务的状态条目"""
    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None
    return_code: Optional[int] = None
    message: Optional[str] = None
    update_time: Optional[str] = None
    request: Optional[Dict[str, Any]] = None

class SubmitResult(BaseModel):
    external_task_id: str
    raw_response: Dict[str, Any]
