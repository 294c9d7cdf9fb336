# catsof/infra/airtable_store.py
"""
Airtable-backed record store for cat submissions.

- Writes: one "Pending" record per accepted submission
- Reads: approved records (via a table view) for the public gallery

API:
    POST {base}/{table}                         { "fields": {...} }
    GET  {base}/{table}?view=..&pageSize=100    { "records": [...], "offset": "..." }
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Callable
from urllib.parse import quote

import aiohttp

from catsof.core.domain import AirtableCredentials, CatRecord, CatSubmission
from catsof.core.errors import RecordStoreError
from catsof.infra.http_client import get_default_session
from catsof.infra.logging_config import get_logger

logger = get_logger(__name__)

AIRTABLE_API = "https://api.airtable.com/v0"
PAGE_SIZE = 100
MAX_PAGES = 50
PENDING_STATUS = "Pending"


def format_airtable_error(status: int, text: str) -> str:
    """
    Condense an Airtable error body.

    ``{"error": "NOT_FOUND"}`` → ``"NOT_FOUND (status 404)"``
    ``{"error": {"type": "INVALID_PERMISSIONS"}}`` → ``"INVALID_PERMISSIONS (status 403)"``
    """
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, str):
            return f"{error} (status {status})"
        if isinstance(error, dict) and error.get("type"):
            return f"{error['type']} (status {status})"

    return f"{text or 'Unknown Airtable error'} (status {status})"


def _created_sort_key(record: CatRecord) -> datetime:
    try:
        parsed = datetime.fromisoformat(record.created_time.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_from_row(row: dict) -> CatRecord:
    fields = row.get("fields") or {}
    return CatRecord(
        id=row.get("id", ""),
        created_time=row.get("createdTime") or "",
        cat_name=fields.get("Cat Name") or "Unnamed Cat",
        human_name=fields.get("Human Name") or "Anonymous Developer",
        developer_url=fields.get("Developer URL") or "",
        photo_url=fields.get("Photo URL") or "",
        story=fields.get("Story") or "",
    )


def build_pending_fields(submission: CatSubmission, photo_url: str) -> dict:
    return {
        "Cat Name": submission.cat_name,
        "Human Name": submission.human_name,
        "Developer URL": submission.developer_url,
        "Photo URL": photo_url,
        "Story": submission.story,
        "Status": PENDING_STATUS,
    }


class AirtableRecordStore:
    """Record store client; credentials are supplied per call"""

    def __init__(
        self,
        session_getter: Callable[[], aiohttp.ClientSession] = get_default_session,
    ):
        self._session_getter = session_getter

    @staticmethod
    def table_url(credentials: AirtableCredentials) -> str:
        return f"{AIRTABLE_API}/{credentials.base_id}/{quote(credentials.table_name, safe='')}"

    @staticmethod
    def _headers(credentials: AirtableCredentials) -> dict[str, str]:
        return {"Authorization": f"Bearer {credentials.token}"}

    async def create_pending(
        self,
        submission: CatSubmission,
        photo_url: str,
        credentials: AirtableCredentials,
    ) -> str:
        """
        Write a moderation record with Status "Pending".

        Returns:
            Airtable record id (may be empty if the response omits it)

        Raises:
            RecordStoreError: non-2xx response or transport failure
        """
        payload = {"fields": build_pending_fields(submission, photo_url)}
        session = self._session_getter()
        context = {"base_id": credentials.base_id, "table": credentials.table_name}

        try:
            async with session.post(
                self.table_url(credentials),
                headers=self._headers(credentials),
                json=payload,
            ) as resp:
                if not 200 <= resp.status < 300:
                    details = format_airtable_error(resp.status, await resp.text(errors="replace"))
                    logger.error(
                        f"Airtable write failed: {details} "
                        f"(base={credentials.base_id}, table={credentials.table_name})",
                        extra=context,
                    )
                    raise RecordStoreError(f"Could not save submission. {details}")

                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    # 2xx with an unreadable body: the record exists
                    data = {}

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                f"Airtable write failed: {e.__class__.__name__}: {e} "
                f"(base={credentials.base_id}, table={credentials.table_name})",
                extra=context,
                exc_info=True,
            )
            raise RecordStoreError() from e

        record_id = data.get("id", "") if isinstance(data, dict) else ""
        logger.info(f"Pending record created: id={record_id or '?'}", extra=context)
        return record_id

    async def list_approved(self, credentials: AirtableCredentials | None) -> list[CatRecord]:
        """
        Approved records with a photo, newest first.

        Failures are logged and produce an empty list so a gallery build
        never breaks because the store is unavailable.
        """
        if credentials is None:
            return []

        context = {"base_id": credentials.base_id, "table": credentials.table_name}
        rows: list[dict] = []
        offset: str | None = None
        session = self._session_getter()

        try:
            for _page in range(MAX_PAGES):
                params = {"view": credentials.view, "pageSize": str(PAGE_SIZE)}
                if offset:
                    params["offset"] = offset

                async with session.get(
                    self.table_url(credentials),
                    headers=self._headers(credentials),
                    params=params,
                ) as resp:
                    if resp.status != 200:
                        details = format_airtable_error(resp.status, await resp.text(errors="replace"))
                        logger.error(
                            f"Airtable read failed: {details} (base={credentials.base_id}, "
                            f"table={credentials.table_name}, view={credentials.view})",
                            extra=context,
                        )
                        return []
                    data = await resp.json(content_type=None)

                rows.extend(data.get("records") or [])
                offset = data.get("offset")
                if not offset:
                    break

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, AttributeError) as e:
            logger.error(
                f"Airtable read failed: {e.__class__.__name__}: {e}",
                extra=context,
                exc_info=True,
            )
            return []

        records = [record_from_row(row) for row in rows]
        records.sort(key=_created_sort_key, reverse=True)
        approved = [r for r in records if r.photo_url]

        logger.info(f"Approved records loaded: {len(approved)} of {len(records)}", extra=context)
        return approved
