# opsportal/exports/storage.py

"""
Artifact storage for background export results.

Stores are append-only: a key is written once and never overwritten, so a
job's ``result_ref`` always points at the bytes it was created with.
"""

import shutil
from pathlib import Path
from typing import Optional, Protocol

from opsportal.core.config import settings
from opsportal.utils.logger import get_logger
from opsportal.utils.s3_utils import S3Utils

logger = get_logger(__name__)


class ArtifactExistsError(FileExistsError):
    """Raised when writing to a key that already holds an artifact."""


class ArtifactStore(Protocol):
    def put(self, key: str, source: Path, content_type: str) -> str:
        ...

    def url(self, ref: str) -> Optional[str]:
        ...

    def local_path(self, ref: str) -> Optional[Path]:
        ...


class LocalArtifactStore:
    """Keeps artifacts under a directory on local disk."""

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, ref: str) -> Path:
        path = (self.root / ref).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Artifact reference escapes storage root: {ref}")
        return path

    def put(self, key: str, source: Path, content_type: str) -> str:
        target = self._resolve(key)
        if target.exists():
            raise ArtifactExistsError(f"Artifact already stored at {key}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        logger.info("Stored export artifact on disk", key=key, path=str(target))
        return key

    def url(self, ref: str) -> Optional[str]:
        return None

    def local_path(self, ref: str) -> Optional[Path]:
        path = self._resolve(ref)
        return path if path.exists() else None


class S3ArtifactStore:
    """Uploads artifacts to the configured S3 bucket and serves presigned URLs."""

    def __init__(self, s3: Optional[S3Utils] = None, url_expiry: int = 3600):
        self.s3 = s3 or S3Utils()
        self.url_expiry = url_expiry

    def put(self, key: str, source: Path, content_type: str) -> str:
        if self.s3.object_exists(key):
            raise ArtifactExistsError(f"Artifact already stored at {key}")
        with open(source, "rb") as fh:
            self.s3.upload_file(fh, key, content_type=content_type)
        logger.info("Uploaded export artifact to S3", key=key, bucket=self.s3.bucket_name)
        return key

    def url(self, ref: str) -> Optional[str]:
        return self.s3.generate_presigned_url(ref, expiration=self.url_expiry)

    def local_path(self, ref: str) -> Optional[Path]:
        return None


def get_artifact_store() -> ArtifactStore:
    """Artifact store selected by ``settings.artifact_storage``."""
    if settings.artifact_storage == "s3":
        return S3ArtifactStore(url_expiry=settings.export_presigned_url_expiry)
    if settings.artifact_storage == "local":
        return LocalArtifactStore(str(Path(settings.export_output_dir) / "artifacts"))
    raise ValueError(f"Unknown artifact storage backend: {settings.artifact_storage}")
