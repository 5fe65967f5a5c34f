"""
Remote object store adapters for backup archives.

Supports:
- ObjectStore: backend-agnostic interface used by the sync orchestrator
- S3ObjectStore: AWS S3 and S3-compatible endpoints (MinIO, Spaces)

Objects are stored flat under a normalized path prefix:
{path_prefix}{archive_name}
"""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Mapping

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError

from .archive import Archive, Location, is_archive_name, newest_first
from .errors import (
    StoreIOError,
    ObjectNotFound,
    NotConfigured,
    LocalFileMissing
)


logger = logging.getLogger(__name__)

DEFAULT_REGION = 'us-east-1'
DEFAULT_TIMEOUT = 60

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB

_NOT_FOUND_CODES = ('404', 'NoSuchKey', 'NotFound')


def normalize_prefix(path: Optional[str]) -> str:
    """
    Normalize an object key prefix.

    Leading and trailing slashes are stripped and a single trailing slash is
    re-appended when the result is non-empty.
    """
    path = (path or '').strip('/')
    return f"{path}/" if path else ''


@dataclass(frozen=True)
class RemoteConfig:
    """Connection settings for a remote object store."""

    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    bucket: Optional[str] = None
    path_prefix: str = ''
    region: str = DEFAULT_REGION
    endpoint: Optional[str] = None
    timeout: float = field(default=DEFAULT_TIMEOUT, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'path_prefix', normalize_prefix(self.path_prefix))
        object.__setattr__(self, 'region', self.region or DEFAULT_REGION)

    @property
    def enabled(self) -> bool:
        return bool(self.access_key and self.secret_key and self.bucket and self.path_prefix)

    @classmethod
    def from_mapping(cls, config: Mapping, path_prefix: Optional[str] = None) -> 'RemoteConfig':
        """
        Build a RemoteConfig from a Flask-style config mapping.

        Args:
            config: Mapping with S3_ACCESS_KEY, S3_SECRET_KEY, S3_BUCKET,
                S3_REGION, S3_ENDPOINT and S3_TIMEOUT keys
            path_prefix: Key prefix (from the backup settings)
        """
        return cls(
            access_key=config.get('S3_ACCESS_KEY'),
            secret_key=config.get('S3_SECRET_KEY'),
            bucket=config.get('S3_BUCKET'),
            path_prefix=path_prefix or '',
            region=config.get('S3_REGION') or DEFAULT_REGION,
            endpoint=config.get('S3_ENDPOINT') or None,
            timeout=config.get('S3_TIMEOUT') or DEFAULT_TIMEOUT
        )


class ObjectStore(ABC):
    """
    Interface for remote archive storage.

    When is_enabled() is False, every operation except exists() raises
    NotConfigured.
    """

    path_prefix = ''

    @abstractmethod
    def is_enabled(self) -> bool:
        ...

    @abstractmethod
    def upload(self, local_path: str, name: str) -> str:
        ...

    @abstractmethod
    def download(self, name: str) -> bytes:
        ...

    @abstractmethod
    def check_exists(self, name: str) -> Optional[bool]:
        ...

    @abstractmethod
    def delete(self, name: str):
        ...

    @abstractmethod
    def list(self) -> List[Archive]:
        ...

    @abstractmethod
    def size(self, name: str) -> int:
        ...

    @abstractmethod
    def last_modified(self, name: str) -> int:
        ...

    def exists(self, name: str) -> bool:
        """
        Best-effort existence check.

        Never raises: a failed check is reported as False. Use check_exists() to
        tell "confirmed absent" (False) apart from "check failed" (None).
        """
        return self.check_exists(name) is True

    def key_for(self, name: str) -> str:
        return f"{self.path_prefix}{name}"


class S3ObjectStore(ObjectStore):
    """
    Archive storage backed by AWS S3 or an S3-compatible endpoint.

    Every call is bounded by the configured connect/read timeout; timeouts
    surface as StoreIOError.
    """

    def __init__(self, config: RemoteConfig):
        """
        Initialize S3 storage handler.

        Args:
            config: Remote connection settings. A disabled config creates no
                client.

        Raises:
            StoreIOError: If the S3 client cannot be created
        """
        self.config = config
        self.bucket_name = config.bucket
        self.path_prefix = config.path_prefix
        self.s3_client = None

        if not config.enabled:
            logger.info("Remote storage disabled (credentials, bucket or path prefix missing)")
            return

        client_kwargs = {
            'aws_access_key_id': config.access_key,
            'aws_secret_access_key': config.secret_key,
            'region_name': config.region,
            'config': BotoConfig(
                connect_timeout=config.timeout,
                read_timeout=config.timeout,
                retries={'max_attempts': 3},
                s3={'addressing_style': 'path'} if config.endpoint else None
            )
        }

        # Custom endpoints (MinIO, DigitalOcean Spaces) need path-style addressing
        if config.endpoint:
            client_kwargs['endpoint_url'] = config.endpoint

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except Exception as e:
            raise StoreIOError(f"Failed to initialize S3 client: {e}")

    def is_enabled(self) -> bool:
        return self.s3_client is not None

    def _require_enabled(self):
        if not self.is_enabled():
            raise NotConfigured("S3 storage is not enabled or configured")

    def _translate(self, error: Exception, action: str, key: str) -> StoreIOError:
        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in _NOT_FOUND_CODES:
                return ObjectNotFound(f"S3 object not found: {key}")
            return StoreIOError(f"S3 {action} failed ({error_code}): {error}")
        if isinstance(error, BotoCoreError):
            return StoreIOError(f"S3 {action} failed: {error}")
        return StoreIOError(f"Failed to {action} S3 object {key}: {error}")

    def upload(self, local_path: str, name: str) -> str:
        """
        Upload archive to S3.

        Args:
            local_path: Path to local archive file
            name: Archive name (object basename)

        Returns:
            S3 key of uploaded file

        Raises:
            NotConfigured: If remote storage is disabled
            LocalFileMissing: If the local file does not exist
            StoreIOError: If upload fails
        """
        self._require_enabled()

        if not os.path.exists(local_path):
            raise LocalFileMissing(f"Local file not found: {local_path}")

        s3_key = self.key_for(name)

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

            return s3_key

        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, 'upload', s3_key)
        except OSError as e:
            raise StoreIOError(f"Failed to read {local_path} for upload: {e}")
        except Exception as e:
            raise self._translate(e, 'upload', s3_key)

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload large file using multipart upload.

        A failed upload is aborted so no partial object remains.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id} for {s3_key}: {abort_error}")
            raise

    def download(self, name: str) -> bytes:
        """
        Download an archive's contents.

        Raises:
            NotConfigured: If remote storage is disabled
            ObjectNotFound: If the object does not exist
            StoreIOError: If download fails
        """
        self._require_enabled()
        s3_key = self.key_for(name)

        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=s3_key)
            with response['Body'] as body:
                return body.read()
        except Exception as e:
            raise self._translate(e, 'download', s3_key)

    def check_exists(self, name: str) -> Optional[bool]:
        """
        Check whether an archive exists.

        Returns:
            True if present, False if confirmed absent or remote storage is
            disabled, None if the check itself failed
        """
        if not self.is_enabled():
            return False

        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=self.key_for(name))
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in _NOT_FOUND_CODES:
                return False
            logger.warning(f"S3 existence check for {name} failed ({error_code})")
            return None
        except BotoCoreError as e:
            logger.warning(f"S3 existence check for {name} failed: {e}")
            return None

    def delete(self, name: str):
        """
        Delete an archive. Deleting a missing object is not an error.

        Raises:
            NotConfigured: If remote storage is disabled
            StoreIOError: If deletion fails
        """
        self._require_enabled()
        s3_key = self.key_for(name)

        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=s3_key)
        except Exception as e:
            error = self._translate(e, 'delete', s3_key)
            if isinstance(error, ObjectNotFound):
                return
            raise error

    def list(self) -> List[Archive]:
        """
        List archives directly under the path prefix.

        Foreign objects and nested keys are ignored.

        Returns:
            Archives sorted newest first

        Raises:
            NotConfigured: If remote storage is disabled
            StoreIOError: If listing fails
        """
        self._require_enabled()

        try:
            archives = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.path_prefix):
                for obj in page.get('Contents', []):
                    name = obj['Key'][len(self.path_prefix):]
                    if not is_archive_name(name):
                        continue

                    archives.append(Archive(
                        name=name,
                        size_bytes=obj['Size'],
                        modified_at=int(obj['LastModified'].timestamp()),
                        location=Location.REMOTE
                    ))

            return newest_first(archives)

        except Exception as e:
            raise self._translate(e, 'list', self.path_prefix)

    def _head(self, name: str) -> dict:
        self._require_enabled()
        s3_key = self.key_for(name)

        try:
            return self.s3_client.head_object(Bucket=self.bucket_name, Key=s3_key)
        except Exception as e:
            raise self._translate(e, 'head', s3_key)

    def size(self, name: str) -> int:
        """Return an archive's size in bytes."""
        return int(self._head(name)['ContentLength'])

    def last_modified(self, name: str) -> int:
        """Return an archive's last-modified unix timestamp."""
        return int(self._head(name)['LastModified'].timestamp())

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            NotConfigured: If remote storage is disabled
            StoreIOError: If connection test fails
        """
        self._require_enabled()

        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StoreIOError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StoreIOError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StoreIOError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StoreIOError(f"Failed to connect to S3: {e}")


def create_object_store(config: RemoteConfig) -> ObjectStore:
    """
    Factory function to create the object store for a remote config.

    Any endpoint speaks the S3 API; endpoint only changes addressing.
    """
    return S3ObjectStore(config)
