"""S3-compatible object storage adapter for the state bucket.

Scaleway Object Storage speaks the S3 protocol at
``s3.<region>.scw.cloud``; the minio client is used against it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from coder_lifecycle.errors import BackendUnreachableError

if TYPE_CHECKING:
    from minio import Minio

logger = structlog.get_logger(__name__)


def s3_endpoint(region: str) -> str:
    """Return the Scaleway S3 endpoint URL for a region.

    Examples:
        >>> s3_endpoint("fr-par")
        'https://s3.fr-par.scw.cloud'
    """
    return f"https://s3.{region}.scw.cloud"


class MinioObjectStorage:
    """ObjectStorage backed by the minio client.

    Args:
        access_key: Scaleway access key.
        secret_key: Scaleway secret key.
        region: Region the endpoint is derived from.
    """

    def __init__(self, access_key: str, secret_key: str, region: str) -> None:
        self._access_key = access_key
        self._secret_key = secret_key
        self._region = region
        self._client: Minio | None = None

    def _get_client(self) -> Minio:
        if self._client is None:
            from minio import Minio

            self._client = Minio(
                endpoint=s3_endpoint(self._region).removeprefix("https://"),
                access_key=self._access_key,
                secret_key=self._secret_key,
                secure=True,
                region=self._region,
            )
        return self._client

    def bucket_exists(self, name: str) -> bool:
        """Probe for the bucket.

        Raises:
            BackendUnreachableError: If the probe cannot complete.
        """
        from minio.error import MinioException
        from urllib3.exceptions import HTTPError

        try:
            exists = self._get_client().bucket_exists(name)
        except (MinioException, HTTPError, OSError, ValueError) as e:
            raise BackendUnreachableError(name, str(e)) from e
        logger.debug("bucket_probe", bucket=name, exists=exists)
        return exists

    def create_bucket(self, name: str, region: str) -> None:
        from minio.error import MinioException
        from urllib3.exceptions import HTTPError

        try:
            self._get_client().make_bucket(name, location=region)
        except (MinioException, HTTPError, OSError, ValueError) as e:
            raise BackendUnreachableError(name, f"bucket creation failed: {e}") from e
        logger.info("bucket_created", bucket=name, region=region)


__all__: list[str] = ["MinioObjectStorage", "s3_endpoint"]
