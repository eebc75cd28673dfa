"""Packages a built binary and uploads it to object storage.

The binary is stored in a zip as a single executable `bootstrap` entry. The
package is written twice, under a key versioned by revision and under a stable
`latest` key, both carrying the same metadata.
"""

from collections.abc import Callable
import hashlib
import io
import logging
import zipfile

import aiofiles

from .builder import BuildArtifact
from .config import StorageConfig
from .exceptions import PublishError
from .storage import ObjectStore

__all__ = ["Publisher", "package_binary", "artifact_keys"]

_LOGGER = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"
DRY_RUN_HASH = "dry-run-hash"


def package_binary(binary: bytes) -> bytes:
    """Return a zip archive holding the binary as an executable `bootstrap`."""
    info = zipfile.ZipInfo("bootstrap")
    info.external_attr = (0o100755 & 0xFFFF) << 16
    info.compress_type = zipfile.ZIP_DEFLATED
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compresslevel=9) as archive:
        archive.writestr(info, binary)
    return buf.getvalue()


def artifact_keys(service: str, revision: str) -> tuple[str, str]:
    """Return the versioned and latest object keys for a service."""
    return (f"{service}/lambda-v{revision}.zip", f"{service}/lambda-latest.zip")


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} Bytes"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024 or unit == "GB":
            break
    return f"{value:.2f} {unit}"


class Publisher:
    """Uploads `lambda-zip` artifacts."""

    def __init__(
        self,
        service: str,
        environment: str,
        storage: StorageConfig,
        store_factory: Callable[[StorageConfig], ObjectStore] = ObjectStore,
        dry_run: bool = False,
    ) -> None:
        """Initialize Publisher."""
        self._service = service
        self._environment = environment
        self._storage = storage
        self._store_factory = store_factory
        self._dry_run = dry_run

    async def publish(self, artifact: BuildArtifact) -> str:
        """Upload the artifact, returning the `s3://` URI of the versioned key."""
        versioned_key, latest_key = artifact_keys(self._service, artifact.revision)
        uri = f"s3://{self._storage.bucket}/{versioned_key}"
        if self._dry_run:
            _LOGGER.info(
                "[dry run] Would upload %s to %s and %s",
                artifact.location,
                uri,
                latest_key,
            )
            return uri

        try:
            async with aiofiles.open(artifact.location, "rb") as binary_file:
                binary = await binary_file.read()
        except OSError as err:
            raise PublishError(
                f"Unable to read artifact {artifact.location}: {err}"
            ) from err

        package = package_binary(binary)
        metadata = {
            "git-hash": artifact.revision,
            "build-timestamp": artifact.timestamp,
            "file-hash": hashlib.sha256(package).hexdigest(),
            "service": self._service,
            "environment": self._environment,
        }
        store = self._store_factory(self._storage)
        await store.ensure_bucket()
        for key in (versioned_key, latest_key):
            stored = await store.put_object(
                key, package, content_type=ZIP_CONTENT_TYPE, metadata=metadata
            )
            _LOGGER.info("Uploaded %s (%s)", key, _format_bytes(stored.size))
        return uri
