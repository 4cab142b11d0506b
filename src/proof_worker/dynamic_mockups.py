"""
Dynamic Mockups API client.

Docs: https://docs.dynamicmockups.com
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .configuration import ProofSettings
from .exceptions import MockupRenderError
from .models import RenderResult

logger = logging.getLogger(__name__)


class DynamicMockupsClient:
    def __init__(self, settings: ProofSettings, http: Optional[httpx.Client] = None) -> None:
        self.settings = settings
        self._http = http or httpx.Client(timeout=settings.http_timeout, follow_redirects=True)

    def _headers(self) -> Dict[str, str]:
        api_key = self.settings.dynamic_mockups_api_key
        if not api_key:
            raise MockupRenderError("DYNAMIC_MOCKUPS_API_KEY not configured")
        return {
            "x-api-key": api_key,
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.settings.dynamic_mockups_base_url.rstrip('/')}/{path.lstrip('/')}"

    def _data(self, response: httpx.Response, action: str) -> Any:
        """Return the ``data`` member of a JSON object response."""
        try:
            payload = response.json()
        except ValueError as e:
            raise MockupRenderError(
                f"DynamicMockups {action} returned a non-JSON body", response.status_code, response.text[:500]
            ) from e
        if not isinstance(payload, dict):
            raise MockupRenderError(
                f"DynamicMockups {action} returned an unexpected body", response.status_code, response.text[:500]
            )
        return payload.get("data")

    def render(
        self,
        mockup_uuid: str,
        smart_object_uuid: str,
        asset_url: str,
        export_label: str = "proof",
        image_format: Optional[str] = None,
        image_size: Optional[int] = None,
    ) -> RenderResult:
        """
        Render a single mockup with one design asset.

        Args:
            mockup_uuid: Template to render
            smart_object_uuid: Slot within the template receiving the artwork
            asset_url: Publicly fetchable (signed) URL of raster artwork
            export_label: Label echoed back by the service

        Returns:
            RenderResult whose url points at the exported image

        Raises:
            MockupRenderError: On a non-2xx response or a response without export_path
        """
        body = {
            "mockup_uuid": mockup_uuid,
            "export_label": export_label,
            "export_options": {
                "image_format": image_format or self.settings.export_format,
                "image_size": image_size or self.settings.export_size,
                "mode": "view",
            },
            "smart_objects": [
                {
                    "uuid": smart_object_uuid,
                    "asset": {"url": asset_url},
                }
            ],
        }

        logger.info(f"Rendering mockup {mockup_uuid}")
        try:
            response = self._http.post(self._url("/renders"), json=body, headers=self._headers())
        except httpx.RequestError as e:
            raise MockupRenderError(f"DynamicMockups render request failed: {e}") from e

        if not response.is_success:
            raise MockupRenderError("DynamicMockups render failed", response.status_code, response.text[:500])

        data = self._data(response, "render")
        url = data.get("export_path") if isinstance(data, dict) else None
        if not isinstance(url, str) or not url:
            raise MockupRenderError("DynamicMockups: no export_path in response", response.status_code, response.text[:500])

        logger.info(f"Render complete: {url}")
        label = data.get("export_label")
        return RenderResult(url=url, label=label if isinstance(label, str) and label else export_label)

    def list_mockups(self) -> List[Dict[str, Any]]:
        """List the templates available in the account's library."""
        try:
            response = self._http.get(self._url("/mockups"), headers=self._headers())
        except httpx.RequestError as e:
            raise MockupRenderError(f"DynamicMockups list request failed: {e}") from e

        if not response.is_success:
            raise MockupRenderError("DynamicMockups list failed", response.status_code, response.text[:500])
        data = self._data(response, "list")
        if data is None:
            return []
        if not isinstance(data, list):
            raise MockupRenderError("DynamicMockups: mockup list is not an array", response.status_code, response.text[:500])
        return data

    def download(self, url: str) -> bytes:
        """Fetch an exported render."""
        try:
            response = self._http.get(url)
        except httpx.RequestError as e:
            raise MockupRenderError(f"Fetching export failed: {e}") from e
        if not response.is_success:
            raise MockupRenderError("Fetching export failed", response.status_code)
        return response.content
