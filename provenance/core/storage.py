import asyncio
import hashlib
import os
import structlog
import tempfile
import time
from typing import Any, Dict, Optional
from pathlib import Path

from google.cloud import storage as gcs
from google.cloud.exceptions import GoogleCloudError
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from provenance import config
from provenance.core.errors import BlobNotFound, StorageError
from provenance.core.utils import format_file_size

logger = structlog.get_logger()

CAS_SCHEME = "cas://sha256/"
WALRUS_SCHEME = "walrus://"
GCS_SCHEME = "gs://"


def content_locator(data: bytes) -> str:
    """Content-addressed locator for a byte sequence."""
    return CAS_SCHEME + hashlib.sha256(data).hexdigest()


def _cas_digest(locator: str) -> str:
    if not locator.startswith(CAS_SCHEME):
        raise StorageError(f"Unsupported storage URI format: {locator}", locator=locator)
    digest = locator[len(CAS_SCHEME):]
    if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
        raise StorageError(f"Malformed content address: {locator}", locator=locator)
    return digest


class BlobStore:
    """
    Content-addressed put/get blob store.

    put() is idempotent: identical bytes always map to the same locator.
    get() raises BlobNotFound for unknown locators; transport failures
    propagate unchanged.
    """

    backend = "abstract"

    async def put(self, data: bytes) -> str:
        raise NotImplementedError

    async def get(self, locator: str) -> bytes:
        raise NotImplementedError

    def health_check(self) -> Dict[str, Any]:
        return {"backend": self.backend, "available": True, "error": None}


class InMemoryBlobStore(BlobStore):
    """Blob store kept in process memory, for tests and ephemeral deployments."""

    backend = "memory"

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def put(self, data: bytes) -> str:
        locator = content_locator(data)
        self._blobs.setdefault(locator, bytes(data))
        logger.debug("Blob stored in memory", locator=locator, size=len(data))
        return locator

    async def get(self, locator: str) -> bytes:
        try:
            return self._blobs[locator]
        except KeyError:
            raise BlobNotFound(locator)

    def __len__(self) -> int:
        return len(self._blobs)


class LocalBlobStore(BlobStore):
    """Filesystem blob store laid out as <root>/<aa>/<sha256 hex>."""

    backend = "local"

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or config.LOCAL_BLOB_DIR)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("Local blob store initialized", root=str(self.root))

    def _path(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    def _write(self, data: bytes) -> str:
        locator = content_locator(data)
        path = self._path(_cas_digest(locator))
        if path.exists():
            return locator
        path.parent.mkdir(parents=True, exist_ok=True)
        # Unique temp file per writer, then rename: readers never see a partial
        # blob and concurrent writers of the same bytes all succeed
        with tempfile.NamedTemporaryFile(dir=path.parent, prefix=f".{path.name}.", delete=False) as tmp:
            tmp.write(data)
        try:
            os.replace(tmp.name, path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            if not path.exists():
                raise
        logger.info("Local upload completed successfully",
                    storage_uri=locator, size=format_file_size(len(data)))
        return locator

    def _read(self, locator: str) -> bytes:
        path = self._path(_cas_digest(locator))
        if not path.exists():
            raise BlobNotFound(locator)
        return path.read_bytes()

    async def put(self, data: bytes) -> str:
        return await asyncio.to_thread(self._write, bytes(data))

    async def get(self, locator: str) -> bytes:
        return await asyncio.to_thread(self._read, locator)

    def health_check(self) -> Dict[str, Any]:
        available = self.root.is_dir()
        return {"backend": self.backend, "available": available,
                "error": None if available else f"missing directory {self.root}"}


class GcsBlobStore(BlobStore):
    """Google Cloud Storage blob store; objects are named by their SHA-256 digest."""

    backend = "gcs"

    def __init__(self, bucket_name: Optional[str] = None, prefix: Optional[str] = None,
                 client: Optional[gcs.Client] = None):
        self.bucket_name = bucket_name or config.GCS_BUCKET_NAME
        self.prefix = (prefix if prefix is not None else config.GCS_BLOB_PREFIX).strip("/")
        self.client = client or gcs.Client()
        self.bucket = self.client.bucket(self.bucket_name)
        logger.info("GCS client initialized", bucket_name=self.bucket_name, prefix=self.prefix)

    def _object_path(self, digest: str) -> str:
        path = f"{digest[:2]}/{digest}"
        return f"{self.prefix}/{path}" if self.prefix else path

    def _split_locator(self, locator: str):
        if not locator.startswith(GCS_SCHEME):
            raise StorageError(f"Unsupported storage URI format: {locator}", locator=locator)
        bucket_name, _, object_path = locator[len(GCS_SCHEME):].partition("/")
        if not bucket_name or not object_path:
            raise StorageError(f"Invalid GCS URI: {locator}", locator=locator)
        return bucket_name, object_path

    def _upload(self, data: bytes) -> str:
        digest = hashlib.sha256(data).hexdigest()
        object_path = self._object_path(digest)
        locator = f"{GCS_SCHEME}{self.bucket_name}/{object_path}"
        blob = self.bucket.blob(object_path)
        if blob.exists():
            return locator

        blob.metadata = {"sha256": digest, "upload_timestamp": str(int(time.time()))}
        start_time = time.time()
        try:
            blob.upload_from_string(data, content_type="application/octet-stream")
        except GoogleCloudError as e:
            logger.error("GCS API error during upload", storage_uri=locator, error=str(e),
                         error_code=getattr(e, "code", None))
            raise
        logger.info("GCS upload completed successfully", storage_uri=locator,
                    size=format_file_size(len(data)),
                    upload_time_seconds=round(time.time() - start_time, 2))
        return locator

    def _download(self, locator: str) -> bytes:
        bucket_name, object_path = self._split_locator(locator)
        bucket = self.bucket if bucket_name == self.bucket_name else self.client.bucket(bucket_name)
        blob = bucket.blob(object_path)
        if not blob.exists():
            raise BlobNotFound(locator)
        return blob.download_as_bytes()

    async def put(self, data: bytes) -> str:
        return await asyncio.to_thread(self._upload, bytes(data))

    async def get(self, locator: str) -> bytes:
        return await asyncio.to_thread(self._download, locator)

    def health_check(self) -> Dict[str, Any]:
        health = {"backend": self.backend, "available": False, "error": None}
        try:
            health["available"] = bool(self.bucket.exists())
            if not health["available"]:
                health["error"] = f"bucket {self.bucket_name} does not exist"
        except GoogleCloudError as e:
            health["error"] = str(e)
        return health


class WalrusBlobStore(BlobStore):
    """Walrus HTTP blob store. Blob ids are content-derived, so puts are idempotent."""

    backend = "walrus"

    def __init__(self, endpoint: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.endpoint = (endpoint or config.WALRUS_ENDPOINT).rstrip("/")
        self.timeout = timeout or config.WALRUS_TIMEOUT_SECONDS
        self.session = session or self._build_session()
        logger.info("Walrus HTTP session initialized", endpoint=self.endpoint)

    @staticmethod
    def _build_session() -> requests.Session:
        """HTTP session with transport-level retry for idempotent requests."""
        session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PUT"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _upload(self, data: bytes) -> str:
        digest = hashlib.sha256(data).hexdigest()
        start_time = time.time()
        response = self.session.put(
            f"{self.endpoint}/upload/{digest}",
            data=data,
            headers={"Content-Type": "application/octet-stream"},
            timeout=self.timeout,
        )
        response.raise_for_status()

        cid = response.json().get("cid")
        if not cid:
            raise StorageError("Walrus upload succeeded but no CID returned", digest=digest)

        locator = f"{WALRUS_SCHEME}{cid}"
        logger.info("Walrus upload completed successfully",
                    storage_uri=locator, size=format_file_size(len(data)),
                    upload_time_seconds=round(time.time() - start_time, 2))
        return locator

    def _download(self, locator: str) -> bytes:
        if not locator.startswith(WALRUS_SCHEME):
            raise StorageError(f"Unsupported storage URI format: {locator}", locator=locator)
        cid = locator[len(WALRUS_SCHEME):]
        response = self.session.get(f"{self.endpoint}/download/{cid}", timeout=self.timeout)
        if response.status_code == 404:
            raise BlobNotFound(locator)
        response.raise_for_status()
        return response.content

    async def put(self, data: bytes) -> str:
        return await asyncio.to_thread(self._upload, bytes(data))

    async def get(self, locator: str) -> bytes:
        return await asyncio.to_thread(self._download, locator)

    def health_check(self) -> Dict[str, Any]:
        health = {"backend": self.backend, "available": False, "error": None}
        try:
            response = self.session.get(f"{self.endpoint}/health", timeout=5)
            if response.status_code == 200:
                health["available"] = True
            else:
                health["error"] = f"HTTP {response.status_code}"
        except requests.exceptions.RequestException as e:
            health["error"] = str(e)
        return health


def create_blob_store(backend: Optional[str] = None) -> BlobStore:
    """Build the blob store selected by configuration."""
    backend = backend or config.BLOB_BACKEND
    if backend == "memory":
        return InMemoryBlobStore()
    if backend == "local":
        return LocalBlobStore()
    if backend == "gcs":
        return GcsBlobStore()
    if backend == "walrus":
        return WalrusBlobStore()
    raise StorageError(f"Unknown blob backend: {backend}", backend=backend)
