# opsportal/utils/s3_utils.py

# Standard library imports
from typing import BinaryIO, Optional

# Third party imports
import boto3
from botocore.exceptions import ClientError

# Local imports
from opsportal.core.config import settings
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


class S3Utils:
    """Utility class for interacting with s3"""
    def __init__(self, client=None, bucket_name: Optional[str] = None):
        """Initialize S3 client with AWS credentials"""
        self.s3_client = client or boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )
        self.bucket_name = bucket_name or settings.s3_bucket_name

    def upload_file(self, file_obj: BinaryIO, key: str, content_type: Optional[str] = None) -> None:
        """
        Upload a file to S3

        Args:
            file_obj: File object to upload
            key: S3 key (path) where the file will be stored
            content_type: Optional content type of the file

        Raises:
            ClientError: if the upload fails
        """
        extra_args = {}
        if content_type:
            extra_args['ContentType'] = content_type
        try:
            self.s3_client.upload_fileobj(
                file_obj,
                self.bucket_name,
                key,
                ExtraArgs=extra_args
            )
        except ClientError as e:
            logger.error(f"Error uploading file to S3: {e}", key=key)
            raise

    def object_exists(self, key: str) -> bool:
        """Return True when ``key`` is already present in the bucket."""
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def generate_presigned_url(self, key: str, expiration: int = 3600) -> Optional[str]:
        """
        Generate a presigned URL for temporary access to an S3 object

        Args:
            key: S3 key (path) of the file
            expiration: URL expiration time in seconds (default: 1 hour)

        Returns:
            str: Presigned URL if successful, None otherwise
        """
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={
                    'Bucket': self.bucket_name,
                    'Key': key
                },
                ExpiresIn=expiration
            )
        except ClientError as e:
            logger.error(f"Error generating presigned URL: {e}", key=key)
            return None
