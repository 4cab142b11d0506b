"""
PDF compositor for proof documents.

The proof HTML is rendered with Jinja2 and printed to PDF by headless
Chromium through Playwright. Images arrive either as signed URLs or as
inlined data URIs; the page waits for network idle before printing so
signed URLs are fetched in full.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from jinja2 import Environment, select_autoescape
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright
from pydantic import BaseModel

from .exceptions import PdfRenderError
from .models import Customer, Order, ProofFile

logger = logging.getLogger(__name__)

WATERMARK = "PROOF - NOT FOR PRODUCTION"

PROOF_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Proof {{ order.order_number or order.id }} v{{ version }}</title>
  <style>
    html, body { margin: 0; padding: 0; font-family: Helvetica, Arial, sans-serif; color: #111; }
    * { -webkit-print-color-adjust: exact; print-color-adjust: exact; }
    .watermark {
      position: fixed; top: 45%; left: 0; right: 0; text-align: center;
      font-size: 48px; font-weight: 700; color: rgba(200, 0, 0, 0.12);
      transform: rotate(-30deg); pointer-events: none;
    }
    header { display: flex; justify-content: space-between; border-bottom: 2px solid #111; padding-bottom: 8px; }
    .meta { font-size: 12px; line-height: 1.5; }
    .flags span { display: inline-block; margin-right: 8px; padding: 2px 6px; border: 1px solid #111; font-size: 11px; }
    .file { page-break-inside: avoid; margin-top: 16px; text-align: center; }
    .file img { max-width: 100%; max-height: 7in; object-fit: contain; }
    .file .placement { font-size: 13px; font-weight: 700; text-transform: uppercase; margin-bottom: 4px; }
    .file .filename { font-size: 10px; color: #555; }
    footer { margin-top: 24px; font-size: 10px; color: #555; border-top: 1px solid #ccc; padding-top: 6px; }
  </style>
</head>
<body>
  <div class="watermark">{{ watermark }}</div>
  <header>
    <div>
      <h1>Proof v{{ version }}</h1>
      <div class="meta">Order {{ order.order_number or order.id }}</div>
      <div class="meta">Generated {{ generated_at }}</div>
    </div>
    {% if customer %}
    <div class="meta">
      <strong>{{ customer.name }}</strong><br />
      {% if customer.company %}{{ customer.company }}<br />{% endif %}
      {% if customer.email %}{{ customer.email }}<br />{% endif %}
      {% if customer.phone %}{{ customer.phone }}{% endif %}
    </div>
    {% endif %}
  </header>
  <div class="flags">
    {% if needs_digitizing %}<span>Needs digitizing</span>{% endif %}
    {% if designed_by_66 %}<span>Designed by 66</span>{% endif %}
  </div>
  {% if order.products %}
  <ul class="meta">
    {% for item in order.products %}
    <li>{{ item.name or item.product_id }} &times; {{ item.quantity }}</li>
    {% endfor %}
  </ul>
  {% endif %}
  {% for file in files %}
  <div class="file">
    <div class="placement">{{ file.placement }}</div>
    <img src="{{ file.url }}" alt="{{ file.filename }}" />
    <div class="filename">{{ file.filename }}</div>
  </div>
  {% else %}
  <p>No artwork on file for this order.</p>
  {% endfor %}
  {% if order.notes %}<footer>{{ order.notes }}</footer>{% endif %}
</body>
</html>
"""


class RenderInput(BaseModel):
    order: Order
    customer: Optional[Customer] = None
    files: List[ProofFile]
    watermark: str = WATERMARK
    version: int
    needs_digitizing: bool = False
    designed_by_66: bool = False


def pdf_from_html_with_playwright(html: str) -> bytes:
    """
    Print HTML to a Letter-sized PDF with half-inch margins.

    Raises:
        PdfRenderError: If Chromium fails to launch, load or print
    """
    try:
        with sync_playwright() as p:
            browser = p.chromium.launch(args=["--no-sandbox", "--disable-dev-shm-usage"])
            try:
                page = browser.new_page(viewport={"width": 1200, "height": 1600})
                page.set_content(html, wait_until="networkidle")
                return page.pdf(
                    format="Letter",
                    print_background=True,
                    margin={"top": "0.5in", "bottom": "0.5in", "left": "0.5in", "right": "0.5in"},
                )
            finally:
                browser.close()
    except PlaywrightError as exc:
        raise PdfRenderError(f"Chromium PDF render failed: {exc}") from exc


class ProofRenderer:
    """
    Turns a RenderInput into PDF bytes.

    Attributes:
        backend: Callable printing HTML to PDF (Playwright by default)
    """

    def __init__(self, backend: Callable[[str], bytes] = pdf_from_html_with_playwright) -> None:
        self.backend = backend
        self._env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))
        self._template = self._env.from_string(PROOF_TEMPLATE)

    def render_html(self, payload: RenderInput) -> str:
        return self._template.render(
            order=payload.order,
            customer=payload.customer,
            files=payload.files,
            watermark=payload.watermark,
            version=payload.version,
            needs_digitizing=payload.needs_digitizing,
            designed_by_66=payload.designed_by_66,
            generated_at=datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC"),
        )

    def render(self, payload: RenderInput) -> bytes:
        html = self.render_html(payload)
        pdf = self.backend(html)
        if not pdf:
            raise PdfRenderError("PDF backend returned no data")
        logger.info(f"PDF rendered, size: {len(pdf)} bytes")
        return pdf
