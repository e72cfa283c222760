import hmac
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, BackgroundTasks, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from app.browser import BrowserUnavailableError, ensure_browser_engine
from app.config import settings
from app.database import get_session, init_models
from app.job_store import JobStore, job_store
from app.models.job import CrawlParams, Job, JobKind, JobParams
from app.models.scheduled_job import ScheduledJob
from app.scheduler import RemoteRunClient, ScheduledJobRepository, dispatch_due_jobs
from app.scheduler.repository import clamp_max_turns
from app.schemas import StartCrawlRequest, StartJobRequest, ScheduledJobCreate, ScheduledJobUpdate, ScheduledJobOut
from app.workflow.crawl_runner import CrawlRunner
from app.workflow.runner import AgentRunner

# Set up logging
Path(settings.LOG_FILE_PATH).parent.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),  # Log to console
        logging.FileHandler(settings.LOG_FILE_PATH)  # Log to file
    ]
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info(f"Scheduled job tables ready ({settings.ENVIRONMENT})")
    yield

app = FastAPI(title="Funnel Swiper Agent", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging / error handling middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.monotonic()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"Request {request.method} {request.url.path} failed: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "detail": f"{type(e).__name__}: {e}"}
        )
    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms} ms)")
    return response

# Add exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception handler caught: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "detail": f"{type(exc).__name__}: {exc}"}
    )

# Dependencies

def get_job_store() -> JobStore:
    return job_store

def get_runner_factory():
    return AgentRunner

def get_crawl_runner_factory():
    return CrawlRunner

async def require_browser_engine() -> None:
    """Refuse new jobs up front when no browser can be launched."""
    try:
        await ensure_browser_engine()
    except BrowserUnavailableError as e:
        logger.error(f"Browser engine unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))

def get_repository(session: AsyncSession = Depends(get_session)) -> ScheduledJobRepository:
    return ScheduledJobRepository(session)

async def get_run_client():
    client = RemoteRunClient()
    try:
        yield client
    finally:
        await client.aclose()

def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    secret: Optional[str] = None,
) -> None:
    """Accept the shared secret as a bearer token or ?secret= query parameter."""
    expected = settings.CRON_SECRET
    if not expected:
        raise HTTPException(status_code=503, detail="CRON_SECRET is not configured")
    if authorization and authorization.startswith("Bearer "):
        provided = authorization[len("Bearer "):].strip()
    else:
        provided = secret
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")

def serialize_job(job: Job, include_result: bool = True) -> dict:
    data = {
        "id": job.job_id,
        "job_id": job.job_id,
        "kind": job.kind.value,
        "status": job.status.value,
        "entry_url": job.entry_url,
        "current_step": job.current_step,
        "total_steps": job.total_steps,
        "error": job.error,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }
    if include_result:
        data["result"] = job.result.model_dump(mode="json") if job.result else None
    return data

def serialize_scheduled_job(job: ScheduledJob) -> dict:
    return ScheduledJobOut.model_validate(job).model_dump(mode="json")

# Agent jobs

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}

@app.post("/jobs", status_code=202, dependencies=[Depends(require_browser_engine)])
async def start_job(
    request: StartJobRequest,
    background_tasks: BackgroundTasks,
    store: JobStore = Depends(get_job_store),
    runner_factory=Depends(get_runner_factory),
):
    """Register a job and run it after the response is sent."""
    params = JobParams(
        entry_url=request.entry_url,
        max_steps=request.max_steps,
        viewport_width=request.viewport_width,
        viewport_height=request.viewport_height,
        capture_screenshots=request.capture_screenshots,
        task=request.task,
    )
    job = store.create_job(params.entry_url, params)
    runner = runner_factory(job.job_id, params, store=store)
    background_tasks.add_task(runner.run)
    logger.info(f"Queued job {job.job_id} for {params.entry_url}")

    return {
        "job_id": job.job_id,
        "status": job.status.value,
        "message": f"Job started. Poll GET /jobs/{job.job_id} for progress.",
    }

@app.post("/crawl-jobs", status_code=202, dependencies=[Depends(require_browser_engine)])
async def start_crawl_job(
    request: StartCrawlRequest,
    background_tasks: BackgroundTasks,
    store: JobStore = Depends(get_job_store),
    runner_factory=Depends(get_crawl_runner_factory),
):
    """Register a link or quiz crawl; progress is polled on GET /jobs/{job_id}."""
    params = CrawlParams(**request.model_dump())
    job = store.create_job(params.entry_url, params, kind=JobKind.CRAWL)
    runner = runner_factory(job.job_id, params, store=store)
    background_tasks.add_task(runner.run)
    logger.info(f"Queued {'quiz' if params.quiz_mode else 'link'} crawl {job.job_id} for {params.entry_url}")

    return {
        "job_id": job.job_id,
        "status": job.status.value,
        "message": f"Crawl started. Poll GET /jobs/{job.job_id} for progress.",
    }

@app.get("/jobs")
async def list_jobs(store: JobStore = Depends(get_job_store)):
    return {"jobs": [serialize_job(job, include_result=False) for job in store.list_jobs()]}

@app.get("/jobs/{job_id}")
async def get_job_status(job_id: str, store: JobStore = Depends(get_job_store)):
    job = store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found or expired")
    return serialize_job(job)

# Scheduled jobs

@app.get("/scheduled-jobs/run", dependencies=[Depends(verify_cron_secret)])
async def run_scheduled_jobs(
    repository: ScheduledJobRepository = Depends(get_repository),
    runs: RemoteRunClient = Depends(get_run_client),
):
    """Cron entry point: start every due scheduled job."""
    try:
        summary = await dispatch_due_jobs(repository, runs)
    except Exception as e:
        logger.error(f"Cron execution failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Cron execution failed: {e}")
    logger.info(summary.message)
    return summary.model_dump(mode="json")

@app.get("/scheduled-jobs")
async def list_scheduled_jobs(repository: ScheduledJobRepository = Depends(get_repository)):
    jobs = await repository.list()
    return {"success": True, "jobs": [serialize_scheduled_job(job) for job in jobs]}

@app.post("/scheduled-jobs", status_code=201)
async def create_scheduled_job(
    request: ScheduledJobCreate,
    repository: ScheduledJobRepository = Depends(get_repository),
):
    job = await repository.create(
        title=request.title,
        prompt=request.prompt,
        start_url=request.start_url,
        max_turns=request.max_turns,
        frequency=request.frequency.value,
        template_id=request.template_id,
        category=request.category,
    )
    return {"success": True, "job": serialize_scheduled_job(job)}

@app.patch("/scheduled-jobs/{scheduled_job_id}")
async def update_scheduled_job(
    scheduled_job_id: str,
    request: ScheduledJobUpdate,
    repository: ScheduledJobRepository = Depends(get_repository),
):
    if request.action == "toggle":
        if request.is_active is None:
            raise HTTPException(status_code=400, detail="isActive is required to toggle a job")
        job = await repository.toggle(scheduled_job_id, request.is_active)
    else:
        fields = {}
        if request.title:
            fields["title"] = request.title.strip()
        if request.prompt:
            fields["prompt"] = request.prompt.strip()
        if request.frequency:
            fields["frequency"] = request.frequency.value
        if request.max_turns:
            fields["max_turns"] = clamp_max_turns(request.max_turns)
        if "start_url" in request.model_fields_set:
            fields["start_url"] = (request.start_url or "").strip() or None
        if request.is_active is not None:
            fields["is_active"] = request.is_active
        job = await repository.update(scheduled_job_id, **fields)

    if job is None:
        raise HTTPException(status_code=404, detail=f"Scheduled job {scheduled_job_id} not found")
    return {"success": True, "job": serialize_scheduled_job(job)}

@app.delete("/scheduled-jobs/{scheduled_job_id}")
async def delete_scheduled_job(
    scheduled_job_id: str,
    repository: ScheduledJobRepository = Depends(get_repository),
):
    if not await repository.delete(scheduled_job_id):
        raise HTTPException(status_code=404, detail=f"Scheduled job {scheduled_job_id} not found")
    return {"success": True}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT)
