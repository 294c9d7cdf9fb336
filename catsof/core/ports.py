# catsof/core/ports.py
from __future__ import annotations
from typing import Protocol
from catsof.core.domain import (
    AirtableCredentials,
    CatRecord,
    CatSubmission,
    CloudinaryCredentials,
    ValidatedImage,
)


class RecordStore(Protocol):
    async def create_pending(
        self, submission: CatSubmission, photo_url: str, credentials: AirtableCredentials
    ) -> str: ...

    async def list_approved(self, credentials: AirtableCredentials | None) -> list[CatRecord]: ...


class ImageUploader(Protocol):
    async def upload(self, image: ValidatedImage, credentials: CloudinaryCredentials) -> str:
        """Return the canonical public URL of the uploaded image"""
        ...


class PhotoFetcher(Protocol):
    async def fetch(self, url_string: str) -> ValidatedImage: ...
