# app/lib/gcs_inventory.py
"""
Document store on Google Cloud Storage.

Objects are addressed by their durable gs:// URI (stored in the database);
readable https links are signed on demand because signed URLs expire.
"""
from __future__ import annotations

import io
import os
import re
from datetime import timedelta
from typing import Tuple

from google.cloud import storage

from app.config import Config
from app import logger
from app.lib.imaging import decode_data_url, download_image, is_data_url

log = logger.get_logger(__name__)

_storage = None
def _client():
    global _storage
    if _storage is None:
        _storage = storage.Client()
    return _storage

def _signing_creds():
    import google.auth
    from google.auth import impersonated_credentials
    # Base creds from runtime (Cloud Run SA token)
    base_creds, _ = google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
    # If we already have a signer (e.g., SA key file), use it
    if getattr(base_creds, "signer", None):
        return base_creds
    # Otherwise impersonate a service account that CAN sign
    target_sa = os.getenv("GCS_SIGNING_SERVICE_ACCOUNT")
    if not target_sa:
        from google.auth.compute_engine import _metadata
        from google.auth.transport import requests as google_requests
        target_sa = _metadata.get_service_account_info(google_requests.Request())["email"]
    return impersonated_credentials.Credentials(
        source_credentials=base_creds,
        target_principal=target_sa,
        target_scopes=[
            "https://www.googleapis.com/auth/devstorage.read_write",
            "https://www.googleapis.com/auth/cloud-platform",
        ],
        lifetime=3600,
    )

_GS_RE = re.compile(r"^gs://([^/]+)/(.+)$")

def parse_gs_uri(gs_uri: str) -> Tuple[str, str]:
    """
    Parse 'gs://bucket/key' -> (bucket, key)
    """
    m = _GS_RE.match(gs_uri)
    if not m:
        raise ValueError(f"Invalid gs:// URI: {gs_uri}")
    return m.group(1), m.group(2)


class DocumentStore:
    def __init__(self, cfg: Config):
        self.cfg = cfg

    def put(self, object_name: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return the durable gs:// location."""
        if not self.cfg.gcs_bucket:
            raise RuntimeError("GCS_BUCKET not configured")
        bucket = _client().bucket(self.cfg.gcs_bucket)
        blob = bucket.blob(object_name)
        blob.cache_control = "public, max-age=31536000"
        blob.upload_from_file(io.BytesIO(data), size=len(data), content_type=content_type)
        gs_uri = f"gs://{self.cfg.gcs_bucket}/{object_name}"
        log.info(f"uploaded {len(data)} bytes to {gs_uri}")
        return gs_uri

    def get(self, location: str) -> bytes:
        """Read bytes from a gs:// URI, a data URL, or an https link."""
        if location.startswith("gs://"):
            bucket_name, object_name = parse_gs_uri(location)
            return _client().bucket(bucket_name).blob(object_name).download_as_bytes()
        if is_data_url(location):
            return decode_data_url(location)[0]
        return download_image(location)[0]

    def url_for(self, location: str) -> str:
        """A link an external reader (browser, vision model) can fetch."""
        if not location.startswith("gs://"):
            return location
        bucket_name, object_name = parse_gs_uri(location)
        blob = _client().bucket(bucket_name).blob(object_name)
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=self.cfg.signed_url_ttl),
            method="GET",
            response_disposition=f'inline; filename="{os.path.basename(object_name)}"',
            credentials=_signing_creds(),
        )
