import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from config.settings import settings
from services.captions.assets import LocalFolderAssetSource
from services.captions.captioner import Captioner
from services.captions.environment import SystemEnvironmentProbe
from services.captions.errors import (
    AlreadyProcessing,
    CaptionError,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ProviderEmptyResult,
    ProviderFailure,
    ProviderUnconfigured,
)
from services.captions.models import CaptionSettings, ImageRecord, ImageStatus
from services.captions.pipeline import CaptionPipeline
from services.captions.scheduler import AsyncioScheduler
from services.database import SqlPersistentStore, init_db
from services.llm import llm_router

logging.basicConfig(level=getattr(logging, settings.log_level))
log = logging.getLogger(__name__)

ERROR_STATUS: dict[type[CaptionError], int] = {
    NotFound: 404,
    InvalidTransition: 409,
    AlreadyProcessing: 409,
    PermissionDenied: 403,
    ProviderUnconfigured: 400,
    ProviderFailure: 502,
    ProviderEmptyResult: 502,
}


def build_pipeline() -> CaptionPipeline:
    return CaptionPipeline(
        persistence=SqlPersistentStore(),
        provider=Captioner(),
        asset_source=LocalFolderAssetSource(settings.media_root),
        environment=SystemEnvironmentProbe(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    health = await llm_router.health()
    log.info(f"LLM providers: {health}")

    pipeline = build_pipeline()
    await pipeline.load()
    await pipeline.start_background(AsyncioScheduler())
    app.state.pipeline = pipeline
    yield
    await pipeline.stop_background()


app = FastAPI(
    title="Memora",
    description="Background photo captioning with vision models",
    version="0.1.0",
    lifespan=lifespan,
)


def get_pipeline(request: Request) -> CaptionPipeline:
    return request.app.state.pipeline


def http_error(e: CaptionError) -> HTTPException:
    return HTTPException(ERROR_STATUS.get(type(e), 500), str(e))


def image_view(image: ImageRecord) -> dict:
    return image.model_dump(mode="json")


# --- Health ---


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "llm_providers": await llm_router.health(),
    }


@app.get("/status")
async def status(pipeline: CaptionPipeline = Depends(get_pipeline)):
    snap = pipeline.snapshot()
    return {
        "is_processing": snap.is_processing,
        "queue_length": snap.queue_length,
        "last_scan_at": snap.last_scan_at.isoformat() if snap.last_scan_at else None,
        "counts": snap.counts(),
        "provider_configured": pipeline.provider.is_configured(),
        "scheduler": pipeline.scheduler_status(),
    }


# --- Images ---


class AddImageRequest(BaseModel):
    source_ref: str
    file_name: str = ""
    id: str | None = None
    metadata: dict = {}


class ReprocessRequest(BaseModel):
    enqueue: bool = False


class DetailedCaptionRequest(BaseModel):
    force: bool = False


@app.get("/images")
async def list_images(
    status: ImageStatus | None = None,
    pipeline: CaptionPipeline = Depends(get_pipeline),
):
    images = pipeline.snapshot().images
    if status is not None:
        images = [i for i in images if i.status == status]
    return [image_view(i) for i in images]


@app.get("/images/{image_id}")
async def get_image(image_id: str, pipeline: CaptionPipeline = Depends(get_pipeline)):
    try:
        return image_view(await pipeline.get_image(image_id))
    except CaptionError as e:
        raise http_error(e) from e


@app.post("/images", status_code=201)
async def add_image(req: AddImageRequest, pipeline: CaptionPipeline = Depends(get_pipeline)):
    """Register a captured or imported image. Queued when auto-processing is on."""
    record = await pipeline.add_image(
        req.source_ref,
        file_name=req.file_name,
        image_id=req.id,
        metadata=req.metadata,
    )
    return {**image_view(record), "queued": record.id in pipeline.queue}


@app.delete("/images/{image_id}")
async def delete_image(image_id: str, pipeline: CaptionPipeline = Depends(get_pipeline)):
    try:
        await pipeline.delete(image_id)
    except CaptionError as e:
        raise http_error(e) from e
    return {"deleted": image_id}


@app.post("/images/{image_id}/enqueue")
async def enqueue_image(image_id: str, pipeline: CaptionPipeline = Depends(get_pipeline)):
    try:
        added = await pipeline.enqueue(image_id)
    except CaptionError as e:
        raise http_error(e) from e
    return {"queued": True, "already_queued": not added, "queue_length": len(pipeline.queue)}


@app.post("/images/{image_id}/reprocess")
async def reprocess_image(
    image_id: str,
    req: ReprocessRequest | None = None,
    pipeline: CaptionPipeline = Depends(get_pipeline),
):
    """Reset a captioned or failed image. Optionally queue it again."""
    try:
        record = await pipeline.reprocess(image_id)
        if req is not None and req.enqueue:
            await pipeline.enqueue(image_id)
    except CaptionError as e:
        raise http_error(e) from e
    return {**image_view(record), "queued": image_id in pipeline.queue}


@app.post("/images/{image_id}/detailed-caption")
async def detailed_caption(
    image_id: str,
    req: DetailedCaptionRequest | None = None,
    pipeline: CaptionPipeline = Depends(get_pipeline),
):
    try:
        record = await pipeline.generate_detailed_caption(image_id, force=bool(req and req.force))
    except CaptionError as e:
        raise http_error(e) from e
    return image_view(record)


# --- Processing ---


@app.post("/process")
async def process_now(pipeline: CaptionPipeline = Depends(get_pipeline)):
    """Caption everything in the queue now, ignoring the scan frequency."""
    try:
        result = await pipeline.process_now()
    except CaptionError as e:
        raise http_error(e) from e
    return {
        "processed": result.processed,
        "failed": result.failed,
        "skipped": result.skipped,
        "cancelled": result.cancelled,
        "queue_length": len(pipeline.queue),
    }


@app.post("/process/cancel")
async def cancel_processing(pipeline: CaptionPipeline = Depends(get_pipeline)):
    was_processing = pipeline.is_processing
    pipeline.cancel()
    return {"cancelled": was_processing}


@app.post("/scan")
async def scan(pipeline: CaptionPipeline = Depends(get_pipeline)):
    try:
        result = await pipeline.scan_now()
    except CaptionError as e:
        raise http_error(e) from e
    return {
        "new_images_found": result.new_images_found,
        "enqueued": result.enqueued,
        "last_scan_at": pipeline.last_scan_at.isoformat() if pipeline.last_scan_at else None,
    }


# --- Settings ---


@app.get("/settings")
async def get_settings(pipeline: CaptionPipeline = Depends(get_pipeline)):
    return pipeline.settings.model_dump(mode="json")


@app.put("/settings")
async def put_settings(req: CaptionSettings, pipeline: CaptionPipeline = Depends(get_pipeline)):
    updated = await pipeline.update_settings(req)
    return updated.model_dump(mode="json")
