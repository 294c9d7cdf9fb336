# catsof/core/use_cases.py
from __future__ import annotations

from dataclasses import dataclass

from catsof.core.domain import (
    CandidateSource,
    Credentials,
    IngestionLimits,
    RemoteUrl,
    SubmissionForm,
)
from catsof.core.errors import (
    ConfigurationError,
    InvalidSubmissionError,
    MissingPhotoSourceError,
)
from catsof.core.ports import ImageUploader, PhotoFetcher, RecordStore
from catsof.infra.image_resolver import resolve_canonical_image
from catsof.infra.logging_config import LogContext, get_logger
from catsof.infra.metrics import IngestionMetrics
from catsof.infra.remote_fetcher import RemoteImageFetcher

logger = get_logger(__name__)


@dataclass(frozen=True)
class SubmissionOutcome:
    """Result of one submission; ``skipped`` marks a honeypot hit"""
    photo_url: str | None = None
    record_id: str | None = None
    skipped: bool = False


def choose_source(form: SubmissionForm) -> CandidateSource:
    """
    Pick the single photo source for a submission.

    A non-empty uploaded file wins over photoUrl.

    Raises:
        MissingPhotoSourceError: neither a file nor a URL was supplied
    """
    if form.photo_file is not None and form.photo_file.data:
        return form.photo_file
    if form.submission.photo_url:
        return RemoteUrl(form.submission.photo_url)
    raise MissingPhotoSourceError()


class CatSubmissionService:
    """
    Use-case layer for cat submissions.
    Workflow: honeypot -> field checks -> resolve image -> upload -> pending record.

    The record store is written strictly after the canonical photo URL exists;
    any earlier failure leaves no trace in the store.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        uploader: ImageUploader,
        limits: IngestionLimits | None = None,
        fetcher: PhotoFetcher | None = None,
    ) -> None:
        self.store = store
        self.uploader = uploader
        self.limits = limits or IngestionLimits()
        self.fetcher = fetcher or RemoteImageFetcher(self.limits)

    async def submit(
        self,
        form: SubmissionForm,
        credentials: Credentials,
        request_id: str | None = None,
    ) -> SubmissionOutcome:
        submission = form.submission
        log = LogContext(logger, request_id=request_id)

        if submission.is_bot:
            log.info("Honeypot field filled, submission dropped")
            IngestionMetrics.submission("honeypot")
            return SubmissionOutcome(skipped=True)

        if not submission.cat_name or not submission.human_name:
            IngestionMetrics.submission("invalid")
            raise InvalidSubmissionError("catName and humanName are required.")

        source = choose_source(form)
        if credentials.cloudinary is None:
            raise ConfigurationError("Missing Cloudinary configuration.")
        log = log.bind(source_kind="upload" if source is form.photo_file else "url")

        image = await resolve_canonical_image(source, self.limits, self.fetcher)
        log.info(f"Image validated: {image.size_bytes} bytes, {image.mime_type}")

        photo_url = await self.uploader.upload(image, credentials.cloudinary)
        record_id = await self.store.create_pending(submission, photo_url, credentials.airtable)

        IngestionMetrics.submission("accepted")
        log.info(f"Submission accepted: record={record_id or '?'}")
        return SubmissionOutcome(photo_url=photo_url, record_id=record_id)
