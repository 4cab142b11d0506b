"""
File assembly: the ordered list of images placed into a proof PDF.

Precedence:
- Mockups the customer selected are inlined first, followed by every
  design file as an "(Artwork)" reference.
- Without selected mockups, each design file is rendered onto the order's
  mockup template; a design file whose render fails (or an order with no
  template) falls back to its raw artwork.

Each design file or selected mockup produces one AssemblyOutcome. Outcomes
carry either an entry or the reason it was skipped, and are folded into the
final list in input order.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from .artwork import ArtworkNormalizer
from .configuration import ProofSettings
from .database import ProofDatabase
from .dynamic_mockups import DynamicMockupsClient
from .exceptions import MalformedRecordError, ProofWorkerError
from .models import DesignFile, GeneratedMockup, MockupBinding, Order, ProofFile
from .resolution import resolve_binding
from .storage import ArtifactStore
from .utils import image_mime_type, rehosted_mockup_path, sanitize_label, to_data_uri

logger = logging.getLogger(__name__)

PIPELINE_CREATOR = "proof-pipeline"

# Failures that turn an automatic render into a raw-artwork fallback
RENDER_FALLBACK_ERRORS = (ProofWorkerError, sqlite3.Error)


@dataclass(frozen=True)
class AssemblyOutcome:
    """
    Result of handling one source item.

    Attributes:
        source_id: Generated mockup id or design file id
        entry: The proof file produced, None when skipped
        skip_reason: Why no entry was produced
        fallback_reason: Why a raw-artwork entry replaced a mockup render
    """

    source_id: str
    entry: Optional[ProofFile] = None
    skip_reason: Optional[str] = None
    fallback_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.entry is None


def fold_outcomes(outcomes: List[AssemblyOutcome]) -> List[ProofFile]:
    return [outcome.entry for outcome in outcomes if outcome.entry is not None]


class FileAssembler:
    def __init__(
        self,
        db: ProofDatabase,
        store: ArtifactStore,
        mockups: DynamicMockupsClient,
        normalizer: ArtworkNormalizer,
        settings: ProofSettings,
    ) -> None:
        self.db = db
        self.store = store
        self.mockups = mockups
        self.normalizer = normalizer
        self.settings = settings

    def assemble(self, order: Order, version: int) -> List[ProofFile]:
        """
        Build the ordered proof file list for an order.

        Args:
            order: Order with design files loaded
            version: Proof version, used in rehosted mockup paths

        Returns:
            Entries for the PDF; at least one per design file
        """
        return fold_outcomes(self.assemble_outcomes(order, version))

    def assemble_outcomes(self, order: Order, version: int) -> List[AssemblyOutcome]:
        selected = self._selected_mockup_outcomes(order)
        if any(not outcome.skipped for outcome in selected):
            logger.info(f"Adding {len(order.design_files)} raw artwork file(s) as reference")
            references = [
                AssemblyOutcome(source_id=df.id, entry=self._artwork_entry(df, f"{df.placement} (Artwork)"))
                for df in order.design_files
            ]
            return selected + references

        logger.info(f"No selected mockups for order {order.id}, trying automatic generation")
        binding = self._resolve(order)
        return selected + [self._auto_outcome(order, version, df, binding) for df in order.design_files]

    def _resolve(self, order: Order) -> Optional[MockupBinding]:
        try:
            return resolve_binding(order, self.db, self.settings)
        except RENDER_FALLBACK_ERRORS as exc:
            logger.warning(f"Mockup resolution failed for order {order.id}: {exc}")
            return None

    def _selected_mockup_outcomes(self, order: Order) -> List[AssemblyOutcome]:
        if not order.mockup_ids:
            return []

        logger.info(f"Order {order.id} has {len(order.mockup_ids)} selected mockup(s)")
        try:
            mockups = {m.id: m for m in self.db.get_generated_mockups(order.mockup_ids)}
        except (MalformedRecordError, sqlite3.Error) as exc:
            logger.warning(f"Selected mockup lookup failed for order {order.id}, ignoring selection: {exc}")
            return []

        outcomes = []
        for mockup_id in dict.fromkeys(order.mockup_ids):
            mockup = mockups.get(mockup_id)
            if mockup is None:
                logger.warning(f"Selected mockup {mockup_id} not found")
                outcomes.append(AssemblyOutcome(source_id=mockup_id, skip_reason="not found"))
                continue
            outcomes.append(self._selected_mockup_outcome(mockup))
        return outcomes

    def _selected_mockup_outcome(self, mockup: GeneratedMockup) -> AssemblyOutcome:
        try:
            data = self.store.download(self.settings.bucket_mockups, mockup.storage_path)
        except ProofWorkerError as exc:
            logger.warning(f"Failed to fetch selected mockup {mockup.filename}: {exc}")
            return AssemblyOutcome(source_id=mockup.id, skip_reason=f"fetch failed: {exc}")

        logger.info(f"Added selected mockup {mockup.filename}")
        entry = ProofFile(
            filename=mockup.filename,
            placement=mockup.mockup_name or "MOCKUP",
            url=to_data_uri(data, mockup.mime_type),
        )
        return AssemblyOutcome(source_id=mockup.id, entry=entry)

    def _artwork_url(self, df: DesignFile) -> str:
        return self.store.create_signed_url(
            self.settings.bucket_artwork, df.storage_path, self.settings.artwork_url_ttl
        )

    def _artwork_entry(self, df: DesignFile, placement: str, url: Optional[str] = None) -> ProofFile:
        return ProofFile(filename=df.filename, placement=placement, url=url or self._artwork_url(df))

    def _auto_outcome(
        self,
        order: Order,
        version: int,
        df: DesignFile,
        binding: Optional[MockupBinding],
    ) -> AssemblyOutcome:
        artwork_url = self._artwork_url(df)
        if binding is None:
            return AssemblyOutcome(
                source_id=df.id,
                entry=self._artwork_entry(df, df.placement, artwork_url),
                fallback_reason="no mockup binding",
            )

        try:
            entry = self._render_mockup(order, version, df, binding, artwork_url)
        except RENDER_FALLBACK_ERRORS as exc:
            logger.warning(f"Mockup render failed for {df.filename}, falling back to raw artwork: {exc}")
            return AssemblyOutcome(
                source_id=df.id,
                entry=self._artwork_entry(df, df.placement, artwork_url),
                fallback_reason=str(exc),
            )
        return AssemblyOutcome(source_id=df.id, entry=entry)

    def _render_mockup(
        self,
        order: Order,
        version: int,
        df: DesignFile,
        binding: MockupBinding,
        artwork_url: str,
    ) -> ProofFile:
        logger.info(f"Rendering mockup for {df.filename}")
        asset_url = self.normalizer.normalize(artwork_url, df.mime_type, df.filename)
        label = sanitize_label(f"{order.id}-v{version}-{df.filename}", fallback="proof")
        result = self.mockups.render(binding.mockup_uuid, binding.smart_object_uuid, asset_url, label)

        data = self.mockups.download(result.url)
        self.rehost(order, version, df, binding, data)

        ext = self.settings.export_format
        return ProofFile(
            filename=f"mockup-{df.filename}.{ext}",
            placement=df.placement,
            url=to_data_uri(data, image_mime_type(ext)),
        )

    def rehost(
        self,
        order: Order,
        version: int,
        df: DesignFile,
        binding: MockupBinding,
        data: bytes,
    ) -> GeneratedMockup:
        """
        Copy rendered bytes into the mockups bucket and record them.

        The object is stored before the record is inserted. Identical bytes
        for the same order and version land on the same path, and an
        existing record for that path is reused rather than duplicated.
        """
        ext = self.settings.export_format
        mime_type = image_mime_type(ext)
        path = rehosted_mockup_path(order.id, version, data, ext)

        logger.info(f"Uploading mockup to storage: {path}")
        self.store.upload(self.settings.bucket_mockups, path, data, mime_type)

        existing = self.db.find_generated_mockup(path, df.id)
        if existing is not None:
            logger.info(f"Mockup {path} already recorded as {existing.id}")
            return existing
        return self.db.insert_generated_mockup(
            storage_path=path,
            filename=f"mockup-{df.filename}.{ext}",
            mime_type=mime_type,
            file_size=len(data),
            mockup_uuid=binding.mockup_uuid,
            smart_object_uuid=binding.smart_object_uuid,
            created_by=PIPELINE_CREATOR,
            design_file_id=df.id,
            order_id=order.id,
            customer_id=order.customer.id if order.customer else None,
        )
