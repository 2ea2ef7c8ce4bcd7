"""Order updates API endpoints."""

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from typing import Any, Dict, List
from pydantic import BaseModel

from order_updates import Job, OrderUpdatesQueue

# Create router
router = APIRouter(
    prefix="/order-updates",
    tags=["Order Updates"]
)

class EnqueueResponse(BaseModel):
    """Response model for enqueued order updates."""
    submitted: int
    queued: List[str]

def get_queue(request: Request) -> OrderUpdatesQueue:
    """Queue of the service started by the app lifespan."""
    return request.app.state.order_updates.queue

@router.post("", response_model=EnqueueResponse)
async def enqueue_order_updates(
    order_infos: List[Any] = Body(...),
    queue: OrderUpdatesQueue = Depends(get_queue)
):
    """Queue best-order recomputation for a batch of {context, orderId} triggers.

    Malformed entries and placeholder order ids are dropped, not rejected,
    so the body is only required to be a list.
    Triggers already known to the queue do not show up in `queued`.
    """
    queued = await queue.enqueue(order_infos)
    return EnqueueResponse(submitted=len(order_infos), queued=queued)

@router.get("/counts", response_model=Dict[str, int])
async def get_job_counts(queue: OrderUpdatesQueue = Depends(get_queue)):
    """Number of jobs per status."""
    return await queue.get_counts()

@router.get("/jobs/{job_id:path}", response_model=Job)
async def get_job(job_id: str, queue: OrderUpdatesQueue = Depends(get_queue)):
    """Get the state of a single job."""
    job = await queue.get_job(job_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    return job
