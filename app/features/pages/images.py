# app/features/pages/images.py
from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from typing import Any, Optional

from app.config import Config
from app.lib import openai_client
from app.lib.imaging import sniff_content_type
from app.logger import get_logger

log = get_logger(__name__)


@dataclass
class GeneratedImage:
    data: bytes
    content_type: str
    provider_id: str


class OpenAIImageProvider:
    """
    - With a reference image -> images.edit (the reference anchors face and costume)
    - Without one (previews) -> images.generate

    The OpenAI image API takes no seed, so the same (prompt, seed) does NOT
    reproduce the same image with this provider. The seed names the stored
    object and is recorded on the page row so retries and replays stay
    traceable; replays return the checkpointed image rather than re-rendering.
    """

    def __init__(self, cfg: Config, client: Any = None):
        self.cfg = cfg
        self._client = client

    @property
    def client(self):
        return self._client or openai_client.client

    def generate(self, prompt: str, *, seed: int, reference: Optional[bytes] = None) -> GeneratedImage:
        model = self.cfg.openai_image_model
        if reference:
            ctype = sniff_content_type(reference)
            ext = "jpg" if ctype == "image/jpeg" else "png"
            resp = self.client.images.edit(
                model=model,
                prompt=prompt,
                size=self.cfg.image_size,
                n=1,
                image=(f"reference.{ext}", reference, ctype),
            )
        else:
            resp = self.client.images.generate(
                model=model,
                prompt=prompt,
                size=self.cfg.image_size,
                n=1,
            )

        b64 = resp.data[0].b64_json
        if not b64:
            raise RuntimeError("image provider returned no image data")
        data = base64.b64decode(b64)
        created = getattr(resp, "created", None) or 0
        provider_id = f"{model}:{created}:{hashlib.sha256(data).hexdigest()[:16]}"
        log.debug(f"image rendered seed={seed} bytes={len(data)} id={provider_id}")
        return GeneratedImage(data=data, content_type=sniff_content_type(data), provider_id=provider_id)
