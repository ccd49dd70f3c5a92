"""
Artifact Stores
Local filesystem and Google Cloud Storage backends for job artifacts.
"""

import logging
from pathlib import Path
from typing import Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import storage

from ..ingestion.errors import StoreError, StoreUnavailableError
from .base import ArtifactStore

logger = logging.getLogger(__name__)


class LocalArtifactStore(ArtifactStore):
    """
    Writes artifacts under a base directory.

    URLs are file:// paths unless `base_url` is set, in which case the
    artifact name is appended to it (e.g. a static file server).
    """

    def __init__(self, base_dir: str, base_url: Optional[str] = None):
        self.base_dir = Path(base_dir)
        self.base_url = base_url.rstrip("/") if base_url else None

    def put(self, data: bytes, content_type: str, name: str) -> str:
        path = self.base_dir / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}", {"name": name})

        logger.debug(f"Wrote artifact {path} ({len(data)} bytes, {content_type})")
        if self.base_url:
            return f"{self.base_url}/{name}"
        return path.resolve().as_uri()


class GCSArtifactStore(ArtifactStore):
    """Uploads artifacts to a GCS bucket and returns gs:// URLs."""

    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None):
        self.bucket_name = bucket_name
        self.client = client or storage.Client()
        self.bucket = self.client.bucket(bucket_name)

    def put(self, data: bytes, content_type: str, name: str) -> str:
        blob = self.bucket.blob(name)
        try:
            blob.upload_from_string(data, content_type=content_type)
        except (gcp_exceptions.ServiceUnavailable, gcp_exceptions.TooManyRequests) as e:
            raise StoreUnavailableError(f"GCS unavailable: {e}", {"name": name})
        except gcp_exceptions.Forbidden as e:
            raise StoreError(f"Access denied to gs://{self.bucket_name}/{name}: {e}")
        except gcp_exceptions.GoogleAPICallError as e:
            raise StoreError(f"Failed to upload gs://{self.bucket_name}/{name}: {e}")

        logger.info(f"Uploaded gs://{self.bucket_name}/{name} ({len(data) / 1024:.1f} KB)")
        return f"gs://{self.bucket_name}/{name}"
