import logging
import uuid
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class StorageService:
    """Object storage for rendered artifacts, evidence and defence packs.

    Uses S3 when the endpoint and credentials are configured, otherwise a
    local directory (``LOCAL_STORAGE_DIR/<bucket>/<key>``).
    """

    @staticmethod
    def is_configured() -> bool:
        return bool(
            settings.s3_endpoint_url
            and settings.s3_access_key
            and settings.s3_secret_key
        )

    @staticmethod
    def _get_client():  # type: ignore[return]
        if not StorageService.is_configured():
            raise StorageError(
                "S3 storage is not configured. "
                "Set S3_ENDPOINT_URL, S3_ACCESS_KEY, and S3_SECRET_KEY."
            )
        return boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4"),
        )

    @staticmethod
    def _local_path(bucket: str, key: str) -> Path:
        root = Path(settings.local_storage_dir).resolve()
        path = (root / bucket / key).resolve()
        if root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    @staticmethod
    def generate_storage_key(document_id: str, file_name: str) -> str:
        unique = uuid.uuid4().hex[:12]
        return f"documents/{document_id}/{unique}/{file_name}"

    @staticmethod
    def put_object(
        bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> None:
        if StorageService.is_configured():
            try:
                StorageService._get_client().put_object(
                    Bucket=bucket, Key=key, Body=data, ContentType=content_type
                )
            except (BotoCoreError, ClientError) as e:
                raise StorageError(f"Failed to upload {bucket}/{key}: {e}") from e
        else:
            path = StorageService._local_path(bucket, key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        logger.info("Stored object %s/%s (%d bytes)", bucket, key, len(data))

    @staticmethod
    def get_object(bucket: str, key: str) -> bytes:
        if StorageService.is_configured():
            try:
                response = StorageService._get_client().get_object(
                    Bucket=bucket, Key=key
                )
                return response["Body"].read()
            except (BotoCoreError, ClientError) as e:
                raise StorageError(f"Failed to fetch {bucket}/{key}: {e}") from e
        path = StorageService._local_path(bucket, key)
        if not path.is_file():
            raise StorageError(f"Object not found: {bucket}/{key}")
        return path.read_bytes()

    @staticmethod
    def delete_object(bucket: str, key: str) -> None:
        if StorageService.is_configured():
            try:
                StorageService._get_client().delete_object(Bucket=bucket, Key=key)
            except (BotoCoreError, ClientError) as e:
                raise StorageError(f"Failed to delete {bucket}/{key}: {e}") from e
        else:
            StorageService._local_path(bucket, key).unlink(missing_ok=True)
        logger.info("Deleted object %s/%s", bucket, key)

    @staticmethod
    def generate_download_url(bucket: str, storage_key: str) -> str:
        if not StorageService.is_configured():
            return StorageService._local_path(bucket, storage_key).as_uri()
        client = StorageService._get_client()
        url: str = client.generate_presigned_url(
            "get_object",
            Params={
                "Bucket": bucket,
                "Key": storage_key,
            },
            ExpiresIn=settings.s3_presigned_url_expiry,
        )
        return url


storage = StorageService()
