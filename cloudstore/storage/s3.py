"""AWS S3 storage backend."""

import aioboto3
from typing import AsyncIterator, Dict, Optional
from botocore.exceptions import ClientError, BotoCoreError

from cloudstore.core.errors import BackendError, InvalidObjectNameError, ObjectNotFoundError
from cloudstore.core.logging_config import get_logger
from cloudstore.storage.cachepath import CONTENT_TYPE_KEY, content_type
from cloudstore.storage.protocol import ListPage, ObjectAttrs, UploadSource


logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_KEY_BYTES = 1024
NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


class S3Backend:
    """AWS S3 storage implementation over a single bucket.

    Supports both AWS S3 and S3-compatible services (e.g., MinIO) via
    endpoint_url. User metadata travels as S3 object metadata, except the
    content type, which maps onto the object's Content-Type header.
    """

    name = "s3"

    def __init__(
        self,
        region: str,
        bucket_name: str,
        endpoint_url: Optional[str] = None
    ):
        """Initialize S3 storage backend.

        Args:
            region: AWS region name (e.g., "eu-west-1")
            bucket_name: S3 bucket name
            endpoint_url: Optional S3-compatible endpoint (e.g., "http://minio:9000")
        """
        self.session = aioboto3.Session()
        self.region = region
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url

        logger.info(
            "s3_storage_backend_initialized",
            region=self.region,
            bucket_name=self.bucket_name,
            endpoint_url=self.endpoint_url,
            s3_compatible=bool(endpoint_url),
        )

    @classmethod
    def from_settings(cls, settings) -> "S3Backend":
        return cls(
            region=settings.AWS_REGION,
            bucket_name=settings.BUCKET,
            endpoint_url=settings.AWS_ENDPOINT_URL,
        )

    def _get_s3_client(self):
        """Create S3 client with optional custom endpoint.

        Returns:
            aioboto3 S3 client resource manager
        """
        return self.session.client(
            's3',
            region_name=self.region,
            endpoint_url=self.endpoint_url
        )

    @staticmethod
    def _validate_key(key: str) -> str:
        if not key or not key.strip():
            raise InvalidObjectNameError("object key cannot be empty", {"object": key})
        size = len(key.encode('utf-8'))
        if size > MAX_KEY_BYTES:
            raise InvalidObjectNameError(
                f"S3 object key too long ({size} bytes, max {MAX_KEY_BYTES})",
                {"object": key},
            )
        return key

    def _handle_s3_error(self, exc: Exception, operation: str, key: str) -> Exception:
        """Translate an S3 failure into the storage error kinds.

        Args:
            exc: Original exception
            operation: Operation being performed (e.g., 'upload', 'download')
            key: Object key or listing prefix

        Returns:
            ObjectNotFoundError for missing keys, BackendError otherwise
        """
        error_context = {
            "operation": operation,
            "key": key,
            "bucket": self.bucket_name,
        }

        if isinstance(exc, ClientError):
            error_code = exc.response.get('Error', {}).get('Code', 'Unknown')
            error_message = exc.response.get('Error', {}).get('Message', str(exc))
            error_context.update({
                "error_code": error_code,
                "error_message": error_message,
                "http_status": exc.response.get('ResponseMetadata', {}).get('HTTPStatusCode'),
            })

            if error_code in NOT_FOUND_CODES:
                return ObjectNotFoundError(key, error_context)
            if error_code == 'NoSuchBucket':
                return BackendError(
                    f"S3 bucket '{self.bucket_name}' does not exist",
                    error_context,
                )
            if error_code in ('AccessDenied', '403'):
                return BackendError(
                    f"Access denied to S3 bucket '{self.bucket_name}'. "
                    f"Check AWS credentials and IAM permissions",
                    error_context,
                )

        elif isinstance(exc, BotoCoreError):
            error_context["botocore_error"] = type(exc).__name__

        return BackendError(f"{operation.capitalize()} failed: {exc}", error_context)

    async def get(self, key: str) -> ObjectAttrs:
        key = self._validate_key(key)
        try:
            async with self._get_s3_client() as s3:
                response = await s3.head_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise self._handle_s3_error(exc, "head", key)

        metadata = dict(response.get('Metadata', {}))
        if response.get('ContentType'):
            metadata[CONTENT_TYPE_KEY] = response['ContentType']

        return ObjectAttrs(
            name=key,
            updated=response.get('LastModified'),
            metadata=metadata,
            size=response.get('ContentLength', 0),
        )

    async def download(self, key: str) -> AsyncIterator[bytes]:
        key = self._validate_key(key)

        logger.debug("s3_storage_load_started", bucket_name=self.bucket_name, s3_key=key)

        bytes_read = 0
        try:
            async with self._get_s3_client() as s3:
                response = await s3.get_object(Bucket=self.bucket_name, Key=key)
                async with response['Body'] as stream:
                    while chunk := await stream.read(CHUNK_SIZE):
                        bytes_read += len(chunk)
                        yield chunk
        except (ClientError, BotoCoreError) as exc:
            logger.warning(
                "s3_storage_load_failed",
                bucket_name=self.bucket_name,
                s3_key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise self._handle_s3_error(exc, "download", key)

        logger.debug(
            "s3_storage_load_success",
            bucket_name=self.bucket_name,
            s3_key=key,
            bytes_read=bytes_read,
        )

    async def upload(self, key: str, metadata: Dict[str, str], source: UploadSource) -> None:
        key = self._validate_key(key)
        user_metadata = dict(metadata or {})
        ctype = user_metadata.pop(CONTENT_TYPE_KEY, None) or content_type(key)

        logger.debug("s3_storage_save_started", bucket_name=self.bucket_name, s3_key=key)

        try:
            # upload_fileobj aborts the multipart upload itself on failure.
            async with self._get_s3_client() as s3:
                await s3.upload_fileobj(
                    source,
                    self.bucket_name,
                    key,
                    ExtraArgs={
                        'Metadata': user_metadata,
                        'ContentType': ctype,
                        'ServerSideEncryption': 'AES256',
                    },
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error(
                "s3_storage_save_failed",
                bucket_name=self.bucket_name,
                s3_key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise self._handle_s3_error(exc, "upload", key)

        logger.info(
            "s3_storage_save_success",
            bucket_name=self.bucket_name,
            s3_key=key,
            encryption="AES256",
        )

    async def list(self, prefix: str, delimiter: str, cursor: str, page_size: int) -> ListPage:
        params = {'Bucket': self.bucket_name}
        if prefix:
            params['Prefix'] = prefix
        if delimiter:
            params['Delimiter'] = delimiter
        if cursor:
            params['ContinuationToken'] = cursor
        if page_size > 0:
            params['MaxKeys'] = page_size

        try:
            async with self._get_s3_client() as s3:
                response = await s3.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as exc:
            raise self._handle_s3_error(exc, "list", prefix)

        page = ListPage(
            objects=[
                ObjectAttrs(
                    name=item['Key'],
                    updated=item.get('LastModified'),
                    size=item.get('Size', 0),
                )
                for item in response.get('Contents', [])
            ],
            prefixes=[p['Prefix'] for p in response.get('CommonPrefixes', [])],
        )
        if response.get('IsTruncated'):
            page.next_cursor = response.get('NextContinuationToken', '')

        logger.debug(
            "s3_storage_list_success",
            bucket_name=self.bucket_name,
            prefix=prefix,
            objects=len(page.objects),
            prefixes=len(page.prefixes),
            final=page.next_cursor == "",
        )
        return page

    async def delete(self, key: str) -> None:
        """Delete an object.

        S3 deletes succeed for missing keys, so existence is checked first
        to report ObjectNotFoundError like every other backend.
        """
        key = self._validate_key(key)
        try:
            async with self._get_s3_client() as s3:
                await s3.head_object(Bucket=self.bucket_name, Key=key)
                await s3.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise self._handle_s3_error(exc, "delete", key)

        logger.info("s3_storage_delete_success", bucket_name=self.bucket_name, s3_key=key)
