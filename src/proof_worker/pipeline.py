"""
Proof job pipeline.

One run turns ``(order_id, version)`` into a stored, signed PDF and a
``ready`` Proof record:

    received -> order_loaded -> files_assembled -> pdf_rendered
             -> uploaded -> persisted -> done

Any failure moves the run to ``failed`` and re-raises. The PDF is uploaded
before the Proof row is inserted, so a failed upload never leaves a row
pointing at a missing object. The pipeline itself never retries; that is
the job queue's decision.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .assembly import FileAssembler
from .configuration import ProofSettings
from .database import ProofDatabase
from .models import Proof, ProofStage
from .renderer import WATERMARK, ProofRenderer, RenderInput
from .storage import ArtifactStore
from .utils import proof_pdf_path

logger = logging.getLogger(__name__)

StageCallback = Callable[[ProofStage], None]


class ProofPipeline:
    def __init__(
        self,
        db: ProofDatabase,
        store: ArtifactStore,
        assembler: FileAssembler,
        renderer: ProofRenderer,
        settings: ProofSettings,
    ) -> None:
        self.db = db
        self.store = store
        self.assembler = assembler
        self.renderer = renderer
        self.settings = settings

    def generate_proof(
        self,
        order_id: str,
        version: int = 1,
        notes: Optional[str] = None,
        on_stage: Optional[StageCallback] = None,
    ) -> Proof:
        """
        Generate, store and record one proof version.

        Args:
            order_id: Order to build the proof for
            version: Proof version (>= 1); the same version may be re-run
            notes: Optional notes stored on the Proof
            on_stage: Called with each stage as it is reached

        Returns:
            The inserted Proof record

        Raises:
            ValueError: If version is below 1
            NotFoundError: If the order does not exist
            UpstreamServiceError: If storage or the PDF backend fails
        """
        if version < 1:
            raise ValueError(f"Proof version must be >= 1, got {version}")

        def advance(stage: ProofStage) -> None:
            logger.info(f"[{order_id} v{version}] {stage.value}")
            if on_stage is not None:
                on_stage(stage)

        advance(ProofStage.RECEIVED)
        try:
            order = self.db.get_order(order_id)
            advance(ProofStage.ORDER_LOADED)
            logger.info(f"Order {order_id} has {len(order.design_files)} design file(s)")

            files = self.assembler.assemble(order, version)
            advance(ProofStage.FILES_ASSEMBLED)
            logger.info(f"Prepared {len(files)} file(s) for PDF")

            pdf = self.renderer.render(RenderInput(
                order=order,
                customer=order.customer,
                files=files,
                watermark=WATERMARK,
                version=version,
                needs_digitizing=order.needs_digitizing,
                designed_by_66=order.designed_by_66,
            ))
            advance(ProofStage.PDF_RENDERED)

            pdf_path = proof_pdf_path(order_id, version)
            self.store.upload(self.settings.bucket_proofs, pdf_path, pdf, "application/pdf")
            advance(ProofStage.UPLOADED)

            signed_url = self.store.create_signed_url(
                self.settings.bucket_proofs, pdf_path, self.settings.proof_url_ttl
            )
            proof = self.db.insert_proof(
                order_id=order_id,
                version=version,
                pdf_path=pdf_path,
                pdf_signed_url=signed_url,
                notes=notes,
            )
            advance(ProofStage.PERSISTED)
        except Exception:
            advance(ProofStage.FAILED)
            raise

        advance(ProofStage.DONE)
        return proof
