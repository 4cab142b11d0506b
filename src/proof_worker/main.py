from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .artwork import ArtworkNormalizer
from .assembly import FileAssembler
from .configuration import ProofSettings, load_settings
from .database import ProofDatabase
from .dynamic_mockups import DynamicMockupsClient
from .exceptions import ArtworkConversionError, NotFoundError, UpstreamServiceError
from .job_manager import JobManager, RetryPolicy
from .mockup_generation import MockupGenerator
from .models import (
    GenerateMockupRequest,
    GenerateProofRequest,
    JobDetail,
    JobSummary,
    MockupList,
    Proof,
    ProofJob,
    SignedUrlResponse,
)
from .pipeline import ProofPipeline
from .renderer import ProofRenderer
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: ProofSettings
    db: ProofDatabase
    store: ArtifactStore
    mockups: DynamicMockupsClient
    generator: MockupGenerator
    pipeline: ProofPipeline
    job_manager: JobManager


def build_services(settings: ProofSettings) -> Services:
    db = ProofDatabase(settings.database_path)
    store = ArtifactStore(settings=settings)
    mockups = DynamicMockupsClient(settings)
    normalizer = ArtworkNormalizer(store, settings)
    assembler = FileAssembler(db, store, mockups, normalizer, settings)
    pipeline = ProofPipeline(db, store, assembler, ProofRenderer(), settings)

    def handle(job: ProofJob, on_stage) -> Proof:
        return pipeline.generate_proof(job.order_id, job.version, job.notes, on_stage=on_stage)

    job_manager = JobManager(
        handle,
        concurrency=settings.concurrency,
        retry_policy=RetryPolicy(
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.backoff_seconds,
            backoff_factor=settings.backoff_factor,
        ),
    )
    job_manager.on_completed(lambda job: logger.info(f"Proof completed {job.id} (proof {job.proof_id})"))
    job_manager.on_failed(lambda job: logger.error(f"Proof failed {job.id}: {job.error}"))

    return Services(
        settings=settings,
        db=db,
        store=store,
        mockups=mockups,
        generator=MockupGenerator(db, store, mockups, normalizer, settings),
        pipeline=pipeline,
        job_manager=job_manager,
    )


settings = load_settings()
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
services = build_services(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    services.job_manager.shutdown(wait=False)


app = FastAPI(title="Proof Worker API", version="0.1.0", lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services() -> Services:
    return services


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(UpstreamServiceError)
async def upstream_error_handler(request: Request, exc: UpstreamServiceError) -> JSONResponse:
    logger.error(f"{exc.service} error on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc), "service": exc.service})


@app.exception_handler(ArtworkConversionError)
async def conversion_error_handler(request: Request, exc: ArtworkConversionError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/proofs/{order_id}/generate", response_model=JobSummary, status_code=202)
def generate_proof(
    order_id: str,
    body: Optional[GenerateProofRequest] = None,
    svc: Services = Depends(get_services),
) -> JobSummary:
    body = body or GenerateProofRequest()
    return svc.job_manager.enqueue(order_id, body.version, body.notes)


@app.get("/jobs", response_model=list[JobSummary])
def list_jobs(svc: Services = Depends(get_services)) -> list[JobSummary]:
    return svc.job_manager.list_jobs()


@app.get("/jobs/{job_id}", response_model=JobDetail)
def get_job(job_id: str, svc: Services = Depends(get_services)) -> JobDetail:
    job = svc.job_manager.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.delete("/jobs/{job_id}")
def cancel_job(job_id: str, svc: Services = Depends(get_services)) -> Dict[str, str]:
    try:
        cancelled = svc.job_manager.cancel(job_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    if not cancelled:
        raise HTTPException(status_code=409, detail="Job already started")
    return {"status": "cancelled"}


@app.get("/api/proofs", response_model=list[Proof])
def list_proofs(order_id: Optional[str] = None, svc: Services = Depends(get_services)) -> list[Proof]:
    return svc.db.list_proofs(order_id)


@app.get("/api/proofs/{proof_id}/signed", response_model=SignedUrlResponse)
def refresh_signed_url(proof_id: str, svc: Services = Depends(get_services)) -> SignedUrlResponse:
    proof = svc.db.get_proof(proof_id)
    url = svc.store.create_signed_url(svc.settings.bucket_proofs, proof.pdf_path, svc.settings.proof_url_ttl)
    return SignedUrlResponse(signed_url=url)


@app.get("/api/public/proofs/{proof_id}", response_model=Proof)
def public_proof(proof_id: str, token: str = Query(...), svc: Services = Depends(get_services)) -> Proof:
    proof = svc.db.get_proof_with_token(proof_id, token)
    url = svc.store.create_signed_url(svc.settings.bucket_proofs, proof.pdf_path, svc.settings.proof_url_ttl)
    return proof.model_copy(update={"pdf_signed_url": url})


@app.post("/api/public/proofs/{proof_id}/approve", response_model=Proof)
def approve_proof(proof_id: str, token: str = Query(...), svc: Services = Depends(get_services)) -> Proof:
    proof = svc.db.approve_proof(proof_id, token)
    logger.info(f"Proof {proof_id} approved")
    return proof


@app.get("/api/mockups/list", response_model=MockupList)
def list_mockups(svc: Services = Depends(get_services)) -> MockupList:
    return MockupList(mockups=svc.mockups.list_mockups())


@app.post("/api/mockups/generate")
def generate_mockup(body: GenerateMockupRequest, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    mockup = svc.generator.generate(
        design_file_id=body.design_file_id,
        mockup_uuid=body.mockup_uuid,
        smart_object_uuid=body.smart_object_uuid,
        created_by=body.created_by,
        customer_id=body.customer_id,
        order_id=body.order_id,
        mockup_name=body.mockup_name,
    )
    return {**mockup.model_dump(mode="json"), "signed_url": svc.generator.signed_url(mockup)}
