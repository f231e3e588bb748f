import json
import logging

import boto3
from botocore.exceptions import ClientError
from flask import current_app

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class PhotoStorage:
    """Photo objects in an S3-compatible bucket (MinIO, R2, AWS S3)."""

    def __init__(self, endpoint_url=None, access_key=None, secret_key=None, bucket='photos',
                 region='us-east-1', public_url=None, skip_bucket_creation=False, client=None):
        self.bucket_name = bucket
        self.public_base = public_url.rstrip('/') if public_url else None
        self.skip_bucket_creation = skip_bucket_creation
        self._bucket_checked = False
        self.s3_client = client or boto3.client(
            's3',
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            endpoint_url=endpoint_url,
        )

    @classmethod
    def from_config(cls, cfg: dict):
        return cls(
            endpoint_url=cfg.get('endpoint_url'),
            access_key=cfg.get('access_key'),
            secret_key=cfg.get('secret_key'),
            bucket=cfg.get('bucket') or 'photos',
            region=cfg.get('region') or 'us-east-1',
            public_url=cfg.get('public_url'),
            skip_bucket_creation=bool(cfg.get('skip_bucket_creation')),
        )

    def ensure_bucket(self):
        # R2 and similar providers expect the bucket to be created in their dashboard
        if self.skip_bucket_creation or self._bucket_checked:
            return
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            if code not in ('404', 'NoSuchBucket', 'NotFound'):
                raise StorageError(f"Cannot access bucket {self.bucket_name}: {e}") from e
            self.s3_client.create_bucket(Bucket=self.bucket_name)
            policy = {
                "Version": "2012-10-17",
                "Statement": [{
                    "Effect": "Allow",
                    "Principal": {"AWS": ["*"]},
                    "Action": ["s3:GetObject"],
                    "Resource": [f"arn:aws:s3:::{self.bucket_name}/*"],
                }],
            }
            try:
                self.s3_client.put_bucket_policy(Bucket=self.bucket_name, Policy=json.dumps(policy))
            except ClientError:
                logger.warning("Could not set bucket policy on %s; configure public access manually", self.bucket_name)
        self._bucket_checked = True

    def put(self, key: str, data: bytes, content_type: str):
        self.ensure_bucket()
        try:
            self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=data, ContentType=content_type)
        except ClientError as e:
            raise StorageError(f"Upload of {key} failed: {e}") from e
        logger.info("Stored %s (%d bytes)", key, len(data))

    def get(self, key: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            raise StorageError(f"Download of {key} failed: {e}") from e
        return response['Body'].read()

    def delete(self, key: str):
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            if code == 'NoSuchKey':
                logger.info("File %s doesn't exist, considering it deleted", key)
                return
            raise StorageError(f"Delete of {key} failed: {e}") from e

    def url_for(self, key: str, expires_in: int = 3600) -> str:
        if self.public_base:
            return f"{self.public_base}/{self.bucket_name}/{key}"
        return self.s3_client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.bucket_name, 'Key': key},
            ExpiresIn=expires_in,
        )


def get_storage() -> PhotoStorage:
    storage = current_app.extensions.get('photo_storage')
    if storage is None:
        storage = PhotoStorage.from_config(current_app.config['PREPPER_CONFIG'].get('storage') or {})
        current_app.extensions['photo_storage'] = storage
    return storage
