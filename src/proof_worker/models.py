from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProofStatus(str, Enum):
    READY = "ready"
    APPROVED = "approved"
    FAILED = "failed"


class ProofStage(str, Enum):
    RECEIVED = "received"
    ORDER_LOADED = "order_loaded"
    FILES_ASSEMBLED = "files_assembled"
    PDF_RENDERED = "pdf_rendered"
    UPLOADED = "uploaded"
    PERSISTED = "persisted"
    DONE = "done"
    FAILED = "failed"


class Customer(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None


class LineItem(BaseModel):
    product_id: str
    name: Optional[str] = None
    quantity: int = 1


class DesignFile(BaseModel):
    id: str
    order_id: str
    storage_path: str
    filename: str
    mime_type: str
    placement: str = "front"


class Order(BaseModel):
    id: str
    order_number: Optional[str] = None
    customer: Optional[Customer] = None
    products: List[LineItem] = Field(default_factory=list)
    design_files: List[DesignFile] = Field(default_factory=list)
    needs_digitizing: bool = False
    designed_by_66: bool = False
    mockup_ids: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class MockupBinding(BaseModel):
    mockup_uuid: str
    smart_object_uuid: str
    sku: Optional[str] = None


class GeneratedMockup(BaseModel):
    id: str
    storage_path: str
    filename: str
    mime_type: str
    file_size: int
    mockup_uuid: str
    smart_object_uuid: str
    mockup_name: Optional[str] = None
    created_by: str
    design_file_id: Optional[str] = None
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    created_at: datetime


class Proof(BaseModel):
    id: str
    order_id: str
    version: int = Field(ge=1)
    pdf_path: str
    pdf_signed_url: Optional[str] = None
    status: ProofStatus = ProofStatus.READY
    approval_token: str
    notes: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None


class ProofJob(BaseModel):
    order_id: str
    version: int = Field(default=1, ge=1)
    notes: Optional[str] = None


class ProofFile(BaseModel):
    filename: str
    placement: str
    url: str


class RenderResult(BaseModel):
    url: str
    label: str


class JobEvent(BaseModel):
    timestamp: datetime
    message: str


class JobSummary(BaseModel):
    id: str
    order_id: str
    version: int
    status: JobStatus
    attempts: int = 0
    created_at: datetime
    updated_at: datetime


class JobDetail(JobSummary):
    notes: Optional[str] = None
    proof_id: Optional[str] = None
    events: List[JobEvent]
    error: Optional[str] = None


class GenerateProofRequest(BaseModel):
    version: int = Field(default=1, ge=1)
    notes: Optional[str] = None


class GenerateMockupRequest(BaseModel):
    design_file_id: str
    mockup_uuid: str
    smart_object_uuid: str
    customer_id: Optional[str] = None
    order_id: Optional[str] = None
    mockup_name: Optional[str] = None
    created_by: str = "api"


class SignedUrlResponse(BaseModel):
    signed_url: str


class MockupList(BaseModel):
    mockups: List[Dict[str, Any]]
