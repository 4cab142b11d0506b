"""
Utility functions for artifact naming and content handling.

This module provides helper functions for:
- Sanitizing labels sent to the mockup rendering service
- Content-addressed storage paths for rehosted mockups
- Inlining image bytes as data URIs for PDF embedding
"""

from __future__ import annotations

import base64
import hashlib
import re
from pathlib import Path

# Pattern to match characters that are not safe for object keys and labels
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

VECTOR_MIME_TYPES = {"image/svg+xml"}
VECTOR_EXTENSIONS = {".svg"}


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a key-safe label from user input.

    Args:
        label: The original label string to sanitize
        fallback: Default value to return if sanitization results in an empty string

    Returns:
        A key-safe label (case preserved) or the fallback value

    Example:
        >>> sanitize_label("O1-v1-My Logo!.svg", "proof")
        "O1-v1-My-Logo-.svg"
        >>> sanitize_label("@#$", "proof")
        "proof"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    cleaned = cleaned.strip("-_.")
    return cleaned or fallback


def content_hash(data: bytes, length: int = 8) -> str:
    """Short SHA-1 hex digest of ``data``."""
    return hashlib.sha1(data).hexdigest()[:length]


def rehosted_mockup_path(order_id: str, version: int, data: bytes, ext: str) -> str:
    """
    Storage path for a rendered mockup copied into our own bucket.

    The path depends only on the order, the proof version and the rendered
    bytes, so a byte-identical re-render overwrites the same object.

    Example:
        >>> rehosted_mockup_path("O2", 1, b"...", "jpg")
        "O2/v1-5e4c0f1a.jpg"
    """
    return f"{order_id}/v{version}-{content_hash(data)}.{ext}"


def proof_pdf_path(order_id: str, version: int) -> str:
    return f"{order_id}/v{version}/proof.pdf"


def to_data_uri(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def image_mime_type(ext: str) -> str:
    """Map an export format to its MIME type ("jpg" -> "image/jpeg")."""
    ext = ext.lower().lstrip(".")
    if ext in ("jpg", "jpeg"):
        return "image/jpeg"
    return f"image/{ext}"


def is_vector_artwork(mime_type: str | None, filename: str | None) -> bool:
    """
    True when the artwork is a vector format the rendering service rejects.

    Either signal is enough: uploads sometimes carry a generic MIME type
    while the filename still ends in ``.svg``.
    """
    if mime_type and mime_type.lower() in VECTOR_MIME_TYPES:
        return True
    if filename and Path(filename).suffix.lower() in VECTOR_EXTENSIONS:
        return True
    return False
