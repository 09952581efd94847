# Blob stores

from .base import BlobStore, ObjectStat, ReadCredential, WriteCredential
from .local import LocalBlobStore
from .s3 import S3BlobStore


def build_blob_store(settings) -> BlobStore:
    if settings.storage_backend == "local":
        return LocalBlobStore(
            settings.local_storage_root,
            base_url=settings.local_storage_base_url,
            secret=settings.local_signing_secret,
        )
    if settings.storage_backend == "s3":
        return S3BlobStore(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )
    raise ValueError(f"Unknown storage_backend: {settings.storage_backend}")


__all__ = [
    "BlobStore",
    "ObjectStat",
    "ReadCredential",
    "WriteCredential",
    "LocalBlobStore",
    "S3BlobStore",
    "build_blob_store",
]
