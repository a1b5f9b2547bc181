"""
Content storage port — document bytes in, derived artifacts out.

Key layout (server-controlled, never client-supplied):

    tenants/<organization_id>/documents/<document_id>             original upload
    tenants/<organization_id>/artifacts/<document_id>/<name>      derived files

Artifact keys are deterministic in (document, job type, params), so a job
that runs twice overwrites its own artifact instead of leaving a duplicate.

Errors are classified for the dispatcher:
  missing object            → FatalError      (nothing to retry)
  throttling / 5xx / network → TransientError
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from docpipe.core.errors import FatalError, TransientError
from docpipe.indexing.types import DocumentSnapshot
from docpipe.processing.outputs import Artifact

logger = logging.getLogger(__name__)

_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound", "NoSuchBucket"})


def document_key(document: DocumentSnapshot) -> str:
    return document.storage_key or f"tenants/{document.organization_id}/documents/{document.id}"


def artifact_key(organization_id: str, document_id: str, name: str) -> str:
    safe_name = name.replace("/", "_").replace("..", "_")
    return f"tenants/{organization_id}/artifacts/{document_id}/{safe_name}"


class ContentStorage(ABC):

    @abstractmethod
    async def get_content(self, document: DocumentSnapshot) -> bytes:
        """Raw bytes of the original upload."""

    @abstractmethod
    async def put_artifact(
        self,
        document: DocumentSnapshot,
        name: str,
        data: bytes,
        content_type: str,
        *,
        page_count: int | None = None,
    ) -> Artifact: ...


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------

class InMemoryContentStorage(ContentStorage):

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    def put_document(self, document: DocumentSnapshot, data: bytes) -> None:
        self.objects[document_key(document)] = data

    async def get_content(self, document: DocumentSnapshot) -> bytes:
        key = document_key(document)
        try:
            return self.objects[key]
        except KeyError:
            raise FatalError(f"Content not found for document {document.id}") from None

    async def put_artifact(
        self,
        document: DocumentSnapshot,
        name: str,
        data: bytes,
        content_type: str,
        *,
        page_count: int | None = None,
    ) -> Artifact:
        key = artifact_key(document.organization_id, document.id, name)
        self.objects[key] = data
        return Artifact(key=key, content_type=content_type, size_bytes=len(data), page_count=page_count)


# ---------------------------------------------------------------------------
# S3 adapter
# ---------------------------------------------------------------------------

class S3ContentStorage(ContentStorage):
    """
    aioboto3-backed storage. One instance per process; clients are opened
    per call, as the session is cheap and the client is not shareable
    across event loops.
    """

    def __init__(self, bucket: str, region: str = "us-east-1") -> None:
        self._bucket = bucket
        self._region = region
        self._session = aioboto3.Session()

    def _client(self):
        return self._session.client("s3", region_name=self._region)

    async def get_content(self, document: DocumentSnapshot) -> bytes:
        key = document_key(document)
        try:
            async with self._client() as s3:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                body = await resp["Body"].read()
        except ClientError as exc:
            raise self._classify(exc, key) from exc
        except BotoCoreError as exc:
            raise TransientError(f"S3 unavailable reading {key}: {exc}") from exc

        logger.debug("S3 read ok | doc=%s key=%s size=%d", document.id, key, len(body))
        return body

    async def put_artifact(
        self,
        document: DocumentSnapshot,
        name: str,
        data: bytes,
        content_type: str,
        *,
        page_count: int | None = None,
    ) -> Artifact:
        key = artifact_key(document.organization_id, document.id, name)
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    Metadata={
                        "organization_id": document.organization_id,
                        "document_id":     document.id,
                    },
                )
        except ClientError as exc:
            raise self._classify(exc, key) from exc
        except BotoCoreError as exc:
            raise TransientError(f"S3 unavailable writing {key}: {exc}") from exc

        logger.info(
            "S3 artifact stored | doc=%s key=%s size=%d",
            document.id, key, len(data),
        )
        return Artifact(key=key, content_type=content_type, size_bytes=len(data), page_count=page_count)

    @staticmethod
    def _classify(exc: ClientError, key: str) -> Exception:
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _MISSING_CODES:
            return FatalError(f"S3 object {key} not found")
        if code in {"AccessDenied", "InvalidAccessKeyId"}:
            return FatalError(f"S3 access denied for {key}")
        return TransientError(f"S3 error {code} for {key}")


def build_content_storage(backend: str, *, bucket: str, region: str) -> ContentStorage:
    if backend == "memory":
        return InMemoryContentStorage()
    return S3ContentStorage(bucket=bucket, region=region)
