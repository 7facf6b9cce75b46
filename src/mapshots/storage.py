"""Durable storage for normalized artifacts.

Keys are deterministic per task and ordinal
(``<prefix>/<task_id>/<label>.jpg``), so re-processing a task overwrites its
previous artifacts instead of duplicating them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage

from mapshots.config import StorageConfig
from mapshots.constants import ARTIFACT_CONTENT_TYPE, DEFAULT_STORAGE_PREFIX
from mapshots.errors import StorageWriteFailed
from mapshots.models import Artifact

logger = logging.getLogger(__name__)


def artifact_key(prefix: str, artifact: Artifact) -> str:
    parts = [p for p in (prefix.strip("/"), str(artifact.task_id), artifact.filename) if p]
    return "/".join(parts)


class LocalArtifactStore:
    def __init__(self, root: Path, prefix: str = DEFAULT_STORAGE_PREFIX) -> None:
        self.root = Path(root)
        self.prefix = prefix

    def put(self, artifact: Artifact) -> str:
        destination = self.root / artifact_key(self.prefix, artifact)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(artifact.content)
        except OSError as exc:
            raise StorageWriteFailed(f"cannot write {destination}: {exc}") from exc
        artifact.ref = str(destination)
        logger.info("Stored %s (%d bytes)", artifact.ref, len(artifact.content))
        return artifact.ref


class GcsArtifactStore:
    def __init__(self, client: Any, bucket_name: str, prefix: str = DEFAULT_STORAGE_PREFIX) -> None:
        if not bucket_name:
            raise ValueError("GCS bucket name is required")
        self.client = client
        self.bucket_name = bucket_name
        self.prefix = prefix

    def put(self, artifact: Artifact) -> str:
        key = artifact_key(self.prefix, artifact)
        try:
            blob = self.client.bucket(self.bucket_name).blob(key)
            blob.upload_from_string(artifact.content, content_type=ARTIFACT_CONTENT_TYPE)
        except (GoogleAPIError, OSError) as exc:
            raise StorageWriteFailed(f"cannot upload gs://{self.bucket_name}/{key}: {exc}") from exc
        artifact.ref = str(blob.public_url)
        logger.info("Stored %s (%d bytes)", artifact.ref, len(artifact.content))
        return artifact.ref

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()


def create_store(config: StorageConfig) -> LocalArtifactStore | GcsArtifactStore:
    if config.backend == "local":
        return LocalArtifactStore(Path(config.local_dir), prefix=config.prefix)
    if config.backend == "gcs":
        return GcsArtifactStore(storage.Client(), config.bucket, prefix=config.prefix)
    raise ValueError(f"Unsupported storage backend '{config.backend}'. Use 'gcs' or 'local'.")
