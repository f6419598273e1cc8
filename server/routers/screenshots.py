"""Screenshot job routes: enqueue, poll status, queue statistics."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.container import container
from core.logging import get_logger
from services.task_queue import Job, JobStatus, TaskQueue

logger = get_logger(__name__)
router = APIRouter(prefix="/api/screenshots", tags=["screenshots"])


class ScreenshotTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_id: str = Field(alias="toolId", min_length=1)
    website_url: str = Field(alias="websiteUrl", min_length=1)
    priority: Optional[int] = None


def serialize_job(job: Job) -> Dict[str, Any]:
    """Polling payload with derived convenience flags (timestamps in ms)."""
    return {
        "id": job.id,
        "toolId": job.payload.get("tool_id"),
        "status": job.status.value,
        "screenshots": job.artifacts,
        "error": job.error,
        "priority": job.priority,
        "createdAt": int(job.created_at * 1000),
        "updatedAt": int(job.updated_at * 1000),
        "isComplete": job.status == JobStatus.COMPLETED,
        "isFailed": job.status == JobStatus.FAILED,
        "isTimedOut": job.status == JobStatus.TIMEOUT,
        "isPending": job.status == JobStatus.PENDING,
        "isProcessing": job.status == JobStatus.PROCESSING,
    }


@router.post("/tasks")
async def enqueue_screenshot(
    request: ScreenshotTaskRequest,
    queue: TaskQueue = Depends(lambda: container.screenshot_queue())
):
    """Enqueue a screenshot job and return its id immediately."""
    task_id = queue.enqueue(
        {"tool_id": request.tool_id, "website_url": request.website_url},
        priority=request.priority,
    )
    logger.info("Screenshot task enqueued", task_id=task_id, tool_id=request.tool_id)
    return {
        "success": True,
        "taskId": task_id,
        "message": "Screenshot task enqueued",
    }


@router.get("/tasks/{task_id}")
async def get_screenshot_task(
    task_id: str,
    queue: TaskQueue = Depends(lambda: container.screenshot_queue())
):
    """Poll a screenshot job."""
    job = queue.get_status(task_id)
    if job is None:
        return JSONResponse(
            status_code=404,
            content={"error": "Task not found or expired", "taskId": task_id},
        )
    return serialize_job(job)


@router.get("/stats")
async def get_screenshot_queue_stats(
    queue: TaskQueue = Depends(lambda: container.screenshot_queue())
):
    """Job counts by status."""
    return {
        **queue.get_queue_stats().to_dict(),
        "draining": queue.is_draining,
    }
