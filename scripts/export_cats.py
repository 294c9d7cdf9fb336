#!/usr/bin/env python3
"""
Export approved cats as JSON for the static site build.

Reads the Airtable view configured by AIRTABLE_VIEW (default "Approved"),
drops rows without a photo and sorts newest first. When Airtable is not
configured or unreachable, an empty list is written so the build still runs.

Usage:
    python scripts/export_cats.py                       # print to stdout
    python scripts/export_cats.py -o src/_data/cats.json
    python scripts/export_cats.py --view "Featured" --indent 0

Environment:
    AIRTABLE_TOKEN, AIRTABLE_BASE_ID, AIRTABLE_TABLE_NAME, AIRTABLE_VIEW
"""
import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

from catsof.config import settings
from catsof.infra.airtable_store import AirtableRecordStore
from catsof.infra.http_client import close_all_sessions
from catsof.infra.logging_config import setup_logging


async def export_cats(view: str | None = None) -> list[dict]:
    """Approved cats as plain dicts (empty when Airtable is unavailable)"""
    credentials = settings.airtable_credentials() if settings.airtable_enabled else None
    if credentials is not None and view:
        credentials = replace(credentials, view=view)

    try:
        records = await AirtableRecordStore().list_approved(credentials)
    finally:
        await close_all_sessions()

    return [record.to_dict() for record in records]


def main():
    parser = argparse.ArgumentParser(
        description="Export approved cats from Airtable as JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--output", "-o", help="Write to this file instead of stdout")
    parser.add_argument("--view", "-v", help="Airtable view (default: AIRTABLE_VIEW)")
    parser.add_argument("--indent", type=int, default=2, help="JSON indent (0 for compact)")

    args = parser.parse_args()

    # Logs go to stderr so stdout stays valid JSON
    setup_logging(level=settings.log_level, use_json=False, stream=sys.stderr)

    if not settings.airtable_enabled:
        print("Warning: Airtable is not configured, exporting an empty list", file=sys.stderr)

    cats = asyncio.run(export_cats(args.view))
    payload = json.dumps(cats, indent=args.indent or None, ensure_ascii=False)

    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload + "\n", encoding="utf-8")
        print(f"Wrote {len(cats)} cats to {path}", file=sys.stderr)
    else:
        print(payload)


if __name__ == "__main__":
    main()
