from __future__ import annotations

import logging
import time
from typing import Optional

from .artwork import ArtworkNormalizer
from .configuration import ProofSettings
from .database import ProofDatabase
from .dynamic_mockups import DynamicMockupsClient
from .models import GeneratedMockup
from .storage import ArtifactStore
from .utils import image_mime_type, sanitize_label

logger = logging.getLogger(__name__)


class MockupGenerator:
    """
    Interactive mockup generation for a single design file.

    Customers pick a template and slot, preview the render, and later select
    saved mockups for their proof.
    """

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

    def generate(
        self,
        design_file_id: str,
        mockup_uuid: str,
        smart_object_uuid: str,
        created_by: str,
        customer_id: Optional[str] = None,
        order_id: Optional[str] = None,
        mockup_name: Optional[str] = None,
    ) -> GeneratedMockup:
        """
        Render, store and record a mockup.

        Raises:
            NotFoundError: If the design file does not exist
            ArtworkConversionError: If vector artwork cannot be rasterized
            UpstreamServiceError: If rendering or storage fails
        """
        design_file = self.db.get_design_file(design_file_id)

        artwork_url = self.store.create_signed_url(
            self.settings.bucket_artwork, design_file.storage_path, self.settings.artwork_url_ttl
        )
        asset_url = self.normalizer.normalize(artwork_url, design_file.mime_type, design_file.filename)

        label = sanitize_label(f"{customer_id or 'customer'}-{design_file_id}", fallback="mockup")
        result = self.mockups.render(mockup_uuid, smart_object_uuid, asset_url, label)
        data = self.mockups.download(result.url)

        ext = self.settings.export_format
        mime_type = image_mime_type(ext)
        storage_path = f"{customer_id or 'general'}/{int(time.time() * 1000)}-{design_file.filename}.{ext}"
        self.store.upload(self.settings.bucket_mockups, storage_path, data, mime_type)

        mockup = self.db.insert_generated_mockup(
            storage_path=storage_path,
            filename=f"mockup-{design_file.filename}.{ext}",
            mime_type=mime_type,
            file_size=len(data),
            mockup_uuid=mockup_uuid,
            smart_object_uuid=smart_object_uuid,
            created_by=created_by,
            mockup_name=mockup_name,
            design_file_id=design_file_id,
            order_id=order_id,
            customer_id=customer_id,
        )
        logger.info(f"Generated mockup {mockup.id} for design file {design_file_id}")
        return mockup

    def signed_url(self, mockup: GeneratedMockup) -> str:
        return self.store.create_signed_url(
            self.settings.bucket_mockups, mockup.storage_path, self.settings.proof_url_ttl
        )
