"""
Artwork normalization for the mockup rendering service.

The rendering service accepts raster artwork only. Vector uploads are
rasterized here and re-hosted in the artwork bucket under ``temp/``.
"""

from __future__ import annotations

import io
import logging
import time
from typing import Callable, Optional
from uuid import uuid4

import httpx
from PIL import Image

from .configuration import ProofSettings
from .exceptions import ArtworkConversionError
from .storage import ArtifactStore
from .utils import is_vector_artwork

logger = logging.getLogger(__name__)

MAX_RASTER_SIZE = (4000, 4000)


def rasterize_svg(svg: bytes) -> bytes:
    """
    Rasterize SVG bytes to PNG at the SVG's native size.

    Raises:
        ArtworkConversionError: If the SVG cannot be parsed or rendered
    """
    try:
        # cairosvg loads libcairo on import
        import cairosvg

        return cairosvg.svg2png(bytestring=svg)
    except Exception as exc:
        raise ArtworkConversionError(f"SVG rasterization failed: {exc}") from exc


def fit_png(png: bytes, max_size: tuple[int, int] = MAX_RASTER_SIZE) -> bytes:
    """
    Shrink a PNG to fit inside ``max_size`` keeping aspect ratio and alpha.

    Images already inside the box are re-encoded at their native size;
    nothing is ever enlarged.
    """
    try:
        image = Image.open(io.BytesIO(png))
        image.load()
    except (OSError, Image.DecompressionBombError) as exc:
        raise ArtworkConversionError(f"Rasterized artwork is not a readable image: {exc}") from exc

    if image.mode not in ("RGBA", "LA"):
        image = image.convert("RGBA")
    image.thumbnail(max_size, Image.LANCZOS)

    out = io.BytesIO()
    image.save(out, format="PNG", compress_level=9)
    return out.getvalue()


class ArtworkNormalizer:
    """
    Turn a design asset URL into one the rendering service can composite.

    Attributes:
        store: Artifact store receiving converted rasters
        settings: Bucket names and signed URL lifetime
        rasterize: SVG-to-PNG converter (cairosvg by default)
    """

    def __init__(
        self,
        store: ArtifactStore,
        settings: ProofSettings,
        http: Optional[httpx.Client] = None,
        rasterize: Callable[[bytes], bytes] = rasterize_svg,
    ) -> None:
        self.store = store
        self.settings = settings
        self.rasterize = rasterize
        self._http = http or httpx.Client(timeout=settings.http_timeout, follow_redirects=True)

    def normalize(self, url: str, mime_type: Optional[str], filename: Optional[str]) -> str:
        """
        Return a URL usable as compositing input.

        Raster artwork comes back unchanged. Vector artwork is fetched,
        rasterized once, bounded to 4000x4000, uploaded to a temporary
        object and returned as a freshly signed URL.

        Raises:
            ArtworkConversionError: If fetching or converting fails
            StorageError: If the converted raster cannot be stored or signed
        """
        if not is_vector_artwork(mime_type, filename):
            return url

        logger.info(f"Converting vector artwork {filename} to PNG")
        try:
            response = self._http.get(url)
        except httpx.RequestError as exc:
            raise ArtworkConversionError(f"Failed to download {filename}: {exc}") from exc
        if not response.is_success:
            raise ArtworkConversionError(f"Failed to download {filename} ({response.status_code})")

        png = fit_png(self.rasterize(response.content))

        temp_path = f"temp/{int(time.time() * 1000)}-{uuid4().hex[:8]}-converted.png"
        self.store.upload(self.settings.bucket_artwork, temp_path, png, "image/png")
        signed = self.store.create_signed_url(
            self.settings.bucket_artwork, temp_path, self.settings.artwork_url_ttl
        )
        logger.info(f"Vector artwork {filename} converted ({len(png)} bytes) to {temp_path}")
        return signed
