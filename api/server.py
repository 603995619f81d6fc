"""FastAPI server for the site mirroring service."""

import asyncio
import json
import os
import queue
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from site_mirror.config import AppConfig, load_config
from site_mirror.db import Database
from site_mirror.jobs import JobManager
from site_mirror.logger import setup_logger
from site_mirror.models import Strategy
from site_mirror.state import InvalidTransition, JobNotFound

load_dotenv()

_manager = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _manager is not None:
        _manager.shutdown(wait=False)


app = FastAPI(
    title="Site Mirror API",
    version="0.1.0",
    description="Mirror a web page and everything it references for offline browsing.",
    lifespan=lifespan,
)

# --- Rate limiting ---
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return Response(
        content=json.dumps({"error": "Rate limit exceeded. Please slow down."}),
        status_code=429,
        media_type="application/json",
    )


@app.exception_handler(JobNotFound)
async def job_not_found_handler(request: Request, exc: JobNotFound):
    return Response(
        content=json.dumps({"detail": "Project not found"}),
        status_code=404,
        media_type="application/json",
    )


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return Response(
        content=json.dumps({"detail": str(exc)}),
        status_code=409,
        media_type="application/json",
    )


# --- CORS ---
default_origins = "http://localhost:5173,http://127.0.0.1:5173"
cors_origins = os.environ.get("CORS_ORIGINS", default_origins).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_manager() -> JobManager:
    global _manager
    if _manager is None:
        config_path = os.environ.get("MIRROR_CONFIG", "config.yaml")
        config = load_config(config_path) if os.path.exists(config_path) else AppConfig()
        setup_logger(config.log_dir)
        _manager = JobManager(config, Database(config.db_path))
    return _manager


# --- Models ---

class MirrorRequest(BaseModel):
    url: str
    strategy: Strategy = Strategy.NO_SCRIPT_FETCH
    crawl_depth: int = Field(0, ge=0, le=1)


class ProjectRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class FileUpdate(BaseModel):
    content: str


# --- Routes ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "site-mirror-api"}


@app.get("/api/projects")
async def list_projects(manager: JobManager = Depends(get_manager)):
    return [job.to_dict() for job in manager.list_jobs()]


@app.post("/api/projects")
@limiter.limit("10/minute")
async def create_project(request: Request, req: MirrorRequest,
                         manager: JobManager = Depends(get_manager)):
    """Create a job and start mirroring in the background."""
    try:
        job_id = await asyncio.to_thread(
            manager.start_mirror, req.url, req.strategy, req.crawl_depth, True,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return manager.get_status(job_id).to_dict()


@app.post("/api/estimate")
@limiter.limit("30/minute")
async def estimate(request: Request, req: MirrorRequest,
                   manager: JobManager = Depends(get_manager)):
    est = await asyncio.to_thread(manager.estimate, req.url, req.strategy, req.crawl_depth)
    return {
        "estimatedTime": est.estimated_seconds,
        "estimatedSize": est.estimated_bytes,
        "resourceCount": est.resource_count,
    }


@app.get("/api/projects/{job_id}")
async def get_project(job_id: str, manager: JobManager = Depends(get_manager)):
    return manager.get_status(job_id).to_dict()


@app.patch("/api/projects/{job_id}")
async def rename_project(job_id: str, req: ProjectRename,
                         manager: JobManager = Depends(get_manager)):
    try:
        return manager.rename(job_id, req.name).to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/projects/{job_id}")
async def delete_project(job_id: str, manager: JobManager = Depends(get_manager)):
    manager.delete(job_id)
    return {"success": True}


@app.post("/api/projects/{job_id}/pause")
async def pause_project(job_id: str, manager: JobManager = Depends(get_manager)):
    return manager.pause(job_id).to_dict()


@app.post("/api/projects/{job_id}/resume")
async def resume_project(job_id: str, manager: JobManager = Depends(get_manager)):
    return manager.resume(job_id).to_dict()


@app.get("/api/projects/{job_id}/files")
async def list_files(job_id: str, manager: JobManager = Depends(get_manager)):
    return [
        {"id": f.id, "path": f.path, "kind": f.kind.value, "size": f.size}
        for f in manager.get_files(job_id)
    ]


@app.get("/api/files/{file_id}")
async def get_file(file_id: int, manager: JobManager = Depends(get_manager)):
    row = manager.db.get_file(file_id)
    if not row:
        raise HTTPException(status_code=404, detail="File not found")
    return row


@app.patch("/api/files/{file_id}")
async def update_file(file_id: int, req: FileUpdate, manager: JobManager = Depends(get_manager)):
    """Manual edit of a text file's stored content."""
    if not manager.db.get_file(file_id):
        raise HTTPException(status_code=404, detail="File not found")
    manager.db.update_file_content(file_id, req.content)
    return {"success": True}


@app.get("/api/projects/{job_id}/events")
async def project_events(job_id: str, manager: JobManager = Depends(get_manager)):
    """Progress events for one job as an SSE stream."""
    manager.get_status(job_id)
    events = manager.channel.subscribe(job_id)

    async def event_stream():
        try:
            while True:
                try:
                    event = await asyncio.to_thread(events.get, True, 15)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(event.to_dict())}\n\n"
                if event.status != "processing":
                    break
        finally:
            manager.channel.unsubscribe(events)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
