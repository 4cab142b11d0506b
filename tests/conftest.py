"""
Pytest configuration and fixtures for Proof Worker tests.
"""

import io
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables before importing the app
os.environ["DATABASE_PATH"] = os.path.join(tempfile.mkdtemp(prefix="proof_test_db_"), "proofs.db")
os.environ["DYNAMIC_MOCKUPS_API_KEY"] = "test-dm-key"
os.environ["DYNAMIC_MOCKUPS_DEFAULT_MOCKUP_UUID"] = ""
os.environ["DYNAMIC_MOCKUPS_DEFAULT_SMART_UUID"] = ""
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from proof_worker.artwork import ArtworkNormalizer
from proof_worker.assembly import FileAssembler
from proof_worker.configuration import ProofSettings
from proof_worker.database import ProofDatabase
from proof_worker.dynamic_mockups import DynamicMockupsClient
from proof_worker.exceptions import StorageError
from proof_worker.job_manager import JobManager, RetryPolicy
from proof_worker.main import Services, app, get_services
from proof_worker.mockup_generation import MockupGenerator
from proof_worker.models import Customer, DesignFile, LineItem, Order
from proof_worker.pipeline import ProofPipeline
from proof_worker.renderer import ProofRenderer

FAKE_PDF = b"%PDF-1.4\n% fake proof\n%%EOF"
EXPORT_URL = "https://cdn.dynamicmockups.test/exports/render-1.jpg"
EXPORT_BYTES = b"\xff\xd8\xff\xe0 rendered mockup bytes"
SVG_BYTES = b'<svg xmlns="http://www.w3.org/2000/svg" width="20" height="10"><rect width="20" height="10"/></svg>'


class FakeStore:
    """In-memory artifact store recording every operation in order."""

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.content_types: Dict[Tuple[str, str], str] = {}
        self.operations: List[Tuple[str, str, str]] = []
        self.fail_uploads_to: Optional[str] = None
        self.fail_downloads_of: set = set()

    def upload(self, bucket: str, path: str, data: bytes, content_type: str = "application/pdf") -> None:
        if self.fail_uploads_to == bucket:
            raise StorageError(f"Upload to {bucket}/{path} failed", 500, "InternalError")
        self.objects[(bucket, path)] = data
        self.content_types[(bucket, path)] = content_type
        self.operations.append(("upload", bucket, path))

    def download(self, bucket: str, path: str) -> bytes:
        self.operations.append(("download", bucket, path))
        if path in self.fail_downloads_of or (bucket, path) not in self.objects:
            raise StorageError(f"Download of {bucket}/{path} failed", 404, "NoSuchKey")
        return self.objects[(bucket, path)]

    def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        self.operations.append(("sign", bucket, path))
        return f"https://storage.test/{bucket}/{path}?expires={expires_in}"


def png_bytes(size=(10, 10)) -> bytes:
    out = io.BytesIO()
    Image.new("RGBA", size, (255, 0, 0, 128)).save(out, format="PNG")
    return out.getvalue()


def make_transport(
    render_status: int = 200,
    render_json: Optional[Any] = None,
    render_text: Optional[str] = None,
    requests: Optional[list] = None,
) -> httpx.MockTransport:
    """Mock transport serving the rendering API, exports and signed artwork URLs."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        url = str(request.url)
        if request.method == "POST" and url.endswith("/renders"):
            if render_text is not None:
                return httpx.Response(render_status, text=render_text)
            body = render_json if render_json is not None else {
                "data": {"export_path": EXPORT_URL, "export_label": "label"}
            }
            return httpx.Response(render_status, json=body)
        if request.method == "GET" and url.endswith("/mockups"):
            return httpx.Response(200, json={"data": [{"uuid": "T", "name": "Tee"}]})
        if url == EXPORT_URL:
            return httpx.Response(200, content=EXPORT_BYTES)
        if url.startswith("https://storage.test/") and ".svg" in url:
            return httpx.Response(200, content=SVG_BYTES)
        return httpx.Response(404, text="not found")

    return httpx.MockTransport(handler)


@pytest.fixture
def settings(tmp_path) -> ProofSettings:
    return ProofSettings(
        database_path=tmp_path / "proofs.db",
        dynamic_mockups_api_key="test-dm-key",
        dynamic_mockups_base_url="https://api.dynamicmockups.test/api/v1",
        backoff_seconds=0,
    )


@pytest.fixture
def db(settings) -> ProofDatabase:
    return ProofDatabase(settings.database_path)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def http_requests() -> list:
    return []


@pytest.fixture
def http_client(http_requests) -> httpx.Client:
    return httpx.Client(transport=make_transport(requests=http_requests))


@pytest.fixture
def rasterize_calls() -> list:
    return []


@pytest.fixture
def fake_rasterize(rasterize_calls) -> Callable[[bytes], bytes]:
    def rasterize(svg: bytes) -> bytes:
        rasterize_calls.append(svg)
        return png_bytes((20, 10))

    return rasterize


@pytest.fixture
def normalizer(store, settings, http_client, fake_rasterize) -> ArtworkNormalizer:
    return ArtworkNormalizer(store, settings, http=http_client, rasterize=fake_rasterize)


@pytest.fixture
def mockups_client(settings, http_client) -> DynamicMockupsClient:
    return DynamicMockupsClient(settings, http=http_client)


@pytest.fixture
def assembler(db, store, mockups_client, normalizer, settings) -> FileAssembler:
    return FileAssembler(db, store, mockups_client, normalizer, settings)


@pytest.fixture
def rendered_html() -> list:
    return []


@pytest.fixture
def renderer(rendered_html) -> ProofRenderer:
    def backend(html: str) -> bytes:
        rendered_html.append(html)
        return FAKE_PDF

    return ProofRenderer(backend=backend)


@pytest.fixture
def pipeline(db, store, assembler, renderer, settings) -> ProofPipeline:
    return ProofPipeline(db, store, assembler, renderer, settings)


@pytest.fixture
def make_order(db) -> Callable[..., Order]:
    """Persist an order and return it as loaded from the database."""

    def _make(
        order_id: str,
        files: List[Tuple[str, str, str]] = (("logo.png", "image/png", "front"),),
        sku: Optional[str] = None,
        mockup_ids: Optional[List[str]] = None,
        **flags,
    ) -> Order:
        order = Order(
            id=order_id,
            order_number=f"#{order_id}",
            customer=Customer(id=f"C-{order_id}", name="Ada Lovelace", email="ada@example.com"),
            products=[LineItem(product_id=sku, name="Tee")] if sku else [],
            design_files=[
                DesignFile(
                    id=f"{order_id}-df{i}",
                    order_id=order_id,
                    storage_path=f"{order_id}/{filename}",
                    filename=filename,
                    mime_type=mime,
                    placement=placement,
                )
                for i, (filename, mime, placement) in enumerate(files)
            ],
            mockup_ids=mockup_ids or [],
            **flags,
        )
        db.save_order(order)
        return db.get_order(order_id)

    return _make


@pytest.fixture
def services(settings, db, store, mockups_client, normalizer, pipeline):
    """Application services wired to in-memory fakes."""
    job_manager = JobManager(
        lambda job, on_stage: pipeline.generate_proof(job.order_id, job.version, job.notes, on_stage=on_stage),
        concurrency=1,
        retry_policy=RetryPolicy(max_attempts=1, backoff_seconds=0),
    )
    yield Services(
        settings=settings,
        db=db,
        store=store,
        mockups=mockups_client,
        generator=MockupGenerator(db, store, mockups_client, normalizer, settings),
        pipeline=pipeline,
        job_manager=job_manager,
    )
    job_manager.shutdown(wait=True)


@pytest.fixture
def client(services):
    """Create a test client for the FastAPI app."""
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()
