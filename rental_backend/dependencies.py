"""
Wiring of backend clients and services from settings.

Nothing here is cached: callers build a ``Backend`` once and pass it (or the
services built on it) to whatever needs it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rental_backend.auth import AuthClient, InMemoryAuthClient, PostgresAuthClient
from rental_backend.auth_service import AuthService
from rental_backend.config import Settings, get_settings
from rental_backend.customer_service import CustomerService
from rental_backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from rental_backend.image_service import ImageService
from rental_backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient


@dataclass
class Backend:
    auth: AuthClient
    db: DbClient
    storage: StorageClient


@dataclass
class Services:
    auth: AuthService
    customers: CustomerService
    images: ImageService


def build_backend(settings: Optional[Settings] = None) -> Backend:
    settings = settings or get_settings()

    if settings.use_in_memory_backends or not settings.database_url:
        auth: AuthClient = InMemoryAuthClient(
            session_ttl_seconds=settings.session_ttl_seconds
        )
        db: DbClient = InMemoryDbClient()
    else:
        auth = PostgresAuthClient(
            settings.database_url, session_ttl_seconds=settings.session_ttl_seconds
        )
        db = PostgresDbClient(settings.database_url)

    if settings.use_in_memory_backends or not (
        settings.s3_endpoint or settings.s3_region
    ):
        storage: StorageClient = InMemoryStorageClient()
    else:
        storage = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return Backend(auth=auth, db=db, storage=storage)


def build_services(backend: Backend, settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    return Services(
        auth=AuthService(
            backend.auth,
            backend.db,
            password_reset_redirect_url=settings.password_reset_redirect_url,
        ),
        customers=CustomerService(backend.auth, backend.db),
        images=ImageService(
            backend.storage,
            max_image_bytes=settings.max_image_bytes,
            signed_url_expires_seconds=settings.signed_url_expires_seconds,
        ),
    )
