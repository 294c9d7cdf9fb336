# catsof/core/domain.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


# ============================================================================
# CANDIDATE SOURCE (exactly one per submission)
# ============================================================================

@dataclass(frozen=True)
class UploadedFile:
    """Image attached to the submission as a multipart file part"""
    data: bytes
    declared_mime_type: str
    declared_filename: str
    size: int


@dataclass(frozen=True)
class RemoteUrl:
    """Image referenced by a user-supplied URL"""
    url: str


CandidateSource = Union[UploadedFile, RemoteUrl]


# ============================================================================
# PIPELINE STATE
# ============================================================================

@dataclass(frozen=True)
class ResolvedHost:
    """
    Host-safety verdict for one address at one hop of a redirect chain.
    Recomputed on every hop, never persisted.
    """
    address_family: int  # socket.AF_INET / socket.AF_INET6
    address: str
    is_private: bool


@dataclass(frozen=True)
class FetchAttempt:
    """One hop of a remote fetch (0 <= hop_index <= max_redirects)"""
    url: str
    hop_index: int


@dataclass(frozen=True)
class ValidatedImage:
    """
    Terminal artifact of the ingestion pipeline.

    Invariants: 0 < len(data) <= max image bytes, mime_type is allowlisted,
    filename only contains [A-Za-z0-9._-].
    """
    data: bytes
    mime_type: str
    filename: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class IngestionLimits:
    """Bounds applied to every submission"""
    max_image_bytes: int = 8 * 1024 * 1024
    fetch_timeout_seconds: float = 15.0
    max_redirects: int = 4

    @property
    def max_image_mb(self) -> int:
        return self.max_image_bytes // (1024 * 1024)


# ============================================================================
# CREDENTIALS (passed explicitly, never read from settings in helpers)
# ============================================================================

@dataclass(frozen=True)
class CloudinaryCredentials:
    cloud_name: str
    api_key: str
    api_secret: str
    folder: Optional[str] = None


@dataclass(frozen=True)
class AirtableCredentials:
    token: str
    base_id: str
    table_name: str = "Cats"
    view: str = "Approved"


@dataclass(frozen=True)
class Credentials:
    """
    Everything a submission needs to reach its external collaborators.

    ``cloudinary`` is None when image hosting is not configured; the
    submission service reports that only once a photo source is known.
    """
    airtable: AirtableCredentials
    cloudinary: Optional[CloudinaryCredentials] = None


# ============================================================================
# SUBMISSION / RECORDS
# ============================================================================

@dataclass
class CatSubmission:
    """Text fields of a submission, already trimmed"""
    cat_name: str = ""
    human_name: str = ""
    developer_url: str = ""
    photo_url: str = ""
    story: str = ""
    website: str = ""  # honeypot

    @classmethod
    def from_fields(cls, fields: dict) -> "CatSubmission":
        def clean(key: str) -> str:
            value = fields.get(key)
            return "" if value is None else str(value).strip()

        return cls(
            cat_name=clean("catName"),
            human_name=clean("humanName"),
            developer_url=clean("devUrl"),
            photo_url=clean("photoUrl"),
            story=clean("story"),
            website=clean("website"),
        )

    @property
    def is_bot(self) -> bool:
        return bool(self.website)


@dataclass
class SubmissionForm:
    """Parsed request: text fields plus the optional uploaded file"""
    submission: CatSubmission
    photo_file: Optional[UploadedFile] = None


@dataclass
class CatRecord:
    """Approved record as read back from the record store"""
    id: str
    cat_name: str
    human_name: str
    developer_url: str = ""
    photo_url: str = ""
    story: str = ""
    created_time: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "createdTime": self.created_time,
            "name": self.cat_name,
            "human": self.human_name,
            "developerUrl": self.developer_url,
            "photoUrl": self.photo_url,
            "story": self.story,
        }
