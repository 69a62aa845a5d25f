"""S3CredentialIssuer: presigned POST credentials for direct uploads.

Requires ``boto3``: install with ``pip install drivetree[s3]``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from drivetree.config import DEFAULT_CREDENTIAL_EXPIRES_IN

from .types import UploadCredential

if TYPE_CHECKING:
    from drivetree.config import DriveConfig

logger = logging.getLogger(__name__)


class S3CredentialIssuer:
    """Issues presigned POST credentials keyed ``{owner_id}/{object_id}``.

    The policy caps the upload at the declared size. Failures are
    logged and reported as ``None``: the entry row is already committed
    and the caller can ask for a fresh credential later.
    """

    def __init__(
        self,
        bucket: str,
        *,
        client: Any = None,
        expires_in: int = DEFAULT_CREDENTIAL_EXPIRES_IN,
        **client_kwargs: Any,
    ) -> None:
        self._bucket = bucket
        self._client = client
        self._expires_in = expires_in
        self._client_kwargs = client_kwargs
        self._errors: tuple[type[Exception], ...] = ()

    @classmethod
    def from_config(
        cls, bucket: str, config: DriveConfig, **client_kwargs: Any
    ) -> S3CredentialIssuer:
        """Build an issuer whose credentials live as long as *config* says."""
        return cls(bucket, expires_in=config.credential_expires_in, **client_kwargs)

    def _get_client(self) -> Any:
        if not self._errors:
            try:
                import boto3
                from botocore.exceptions import BotoCoreError, ClientError
            except ImportError as e:
                raise ImportError(
                    "boto3 is required for S3 upload credentials. "
                    "Install it with: pip install drivetree[s3]"
                ) from e
            self._errors = (BotoCoreError, ClientError)
            if self._client is None:
                self._client = boto3.client("s3", **self._client_kwargs)
        return self._client

    @staticmethod
    def object_key(owner_id: int, object_id: int) -> str:
        return f"{owner_id}/{object_id}"

    async def issue_upload_credential(
        self,
        owner_id: int,
        object_id: int,
        size: int,
    ) -> UploadCredential | None:
        client = self._get_client()
        key = self.object_key(owner_id, object_id)
        try:
            # boto3 signs locally but is synchronous; keep it off the event loop.
            presigned = await asyncio.to_thread(
                client.generate_presigned_post,
                Bucket=self._bucket,
                Key=key,
                Fields={"key": key},
                Conditions=[["content-length-range", 0, size]],
                ExpiresIn=self._expires_in,
            )
        except self._errors as e:
            logger.error("Presigned POST failed for %s: %s", key, e, exc_info=True)
            return None
        return UploadCredential(url=presigned["url"], fields=dict(presigned["fields"]))
