# app/lib/imaging.py
from __future__ import annotations

import base64
import re
from typing import Tuple

import requests

from app import logger

log = logger.get_logger(__name__)

_DATAURL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<b64>.+)$", re.IGNORECASE | re.DOTALL)

def sniff_content_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    # WEBP: RIFF....WEBP
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"

def is_data_url(s: str) -> bool:
    return s.startswith("data:") and ";base64," in s

def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """
    Returns (bytes, content_type) for 'data:<mime>;base64,<payload>'.
    The declared MIME is not trusted when the bytes can be sniffed.
    """
    m = _DATAURL_RE.match(data_url.strip())
    if not m:
        raise ValueError("not a base64 data URL")
    b64 = "".join(m.group("b64").split())
    missing_padding = (-len(b64)) % 4
    if missing_padding:
        b64 += "=" * missing_padding
    data = base64.b64decode(b64)
    sniffed = sniff_content_type(data)
    return data, sniffed if sniffed != "application/octet-stream" else m.group("mime").lower()

def to_data_url(data: bytes, content_type: str | None = None) -> str:
    ctype = content_type or sniff_content_type(data)
    return f"data:{ctype};base64,{base64.b64encode(data).decode('ascii')}"

def download_image(url: str, *, timeout: float = 60.0) -> Tuple[bytes, str]:
    """GET an http(s) image. Raises on non-2xx so the caller's step is retried."""
    resp = requests.get(url, timeout=timeout)
    if not resp.ok:
        raise RuntimeError(f"image not accessible ({resp.status_code}): {url}")
    data = resp.content
    ctype = (resp.headers.get("content-type") or "").split(";")[0].strip() or sniff_content_type(data)
    log.debug(f"downloaded {len(data)} bytes ({ctype}) from {url[:80]}")
    return data, ctype
