#!/usr/bin/env python3
"""
Maintenance Script: Sweep Orphaned Objects
==========================================

Lists every object under a prefix of the media bucket and reports (or
removes) those no domain record references any more. Orphans appear when a
record was updated or deleted but removing its old object failed; those
failures are logged as ``orphaned_object`` by the media service.

Usage:
    python scripts/sweep_orphans.py --prefix perfil/ --referenced keys.txt
    python scripts/sweep_orphans.py --prefix perfil/ --referenced keys.txt --delete

The referenced file holds one key or proxy URL per line (an export of the
image/audio fields of the domain records). Blank lines and lines starting
with ``#`` are ignored.

Safety:
    - Dry run by default; nothing is deleted without --delete
    - Self-test objects under _test_/ are never touched
    - An empty referenced file is refused unless --allow-empty is given
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from app.core.config import settings
from app.core.logging_config import setup_logging
from app.services.media_service import MediaService
from app.storage.client import StorageClient
from app.storage.keys import key_from_url
from app.storage.uploader import UploadEngine


def load_referenced_keys(path: Path) -> List[str]:
    """Read keys (or proxy/public URLs) from ``path``, one per line."""
    keys = []
    for line in path.read_text(encoding="utf-8").splitlines():
        entry = line.strip()
        if not entry or entry.startswith("#"):
            continue
        keys.append(key_from_url(entry, settings.MINIO_PUBLIC_URL) or entry)
    return keys


async def sweep(prefix: str, referenced: List[str], delete: bool) -> List[str]:
    client = StorageClient.from_settings(settings)
    await client.start()
    try:
        service = MediaService(
            client,
            UploadEngine(client, settings.retry_policy),
            settings.MINIO_BUCKET_NAME,
            public_base_url=settings.MINIO_PUBLIC_URL,
            self_test_prefix=settings.SELF_TEST_PREFIX,
        )
        return await service.sweep_orphans(prefix, referenced, dry_run=not delete)
    finally:
        await client.close()


def main():
    """Main entry point for the sweep script."""
    parser = argparse.ArgumentParser(description="Report or remove unreferenced objects")
    parser.add_argument("--prefix", required=True, help="Key prefix to sweep, e.g. perfil/")
    parser.add_argument("--referenced", required=True, type=Path, help="File with referenced keys or URLs")
    parser.add_argument("--delete", action="store_true", help="Remove orphans instead of only listing them")
    parser.add_argument("--allow-empty", action="store_true", help="Accept an empty referenced file")
    args = parser.parse_args()

    setup_logging(debug=settings.is_debug_mode, json_logs=settings.use_json_logs)

    print(f"{'='*70}")
    print(f"Orphan Sweep - {datetime.now(timezone.utc).isoformat()}")
    print(f"{'='*70}")
    print(f"Bucket: {settings.MINIO_BUCKET_NAME}  Prefix: {args.prefix}  Mode: {'delete' if args.delete else 'dry run'}\n")

    if not args.referenced.is_file():
        print(f"ERROR: referenced keys file not found: {args.referenced}")
        sys.exit(1)

    referenced = load_referenced_keys(args.referenced)
    if not referenced and not args.allow_empty:
        print("ERROR: referenced keys file is empty; every object would count as orphaned.")
        print("       Pass --allow-empty if that is really intended.")
        sys.exit(1)

    try:
        orphans = asyncio.run(sweep(args.prefix, referenced, args.delete))
    except KeyboardInterrupt:
        print("\n\nSweep cancelled by user.")
        sys.exit(130)
    except Exception as e:
        print(f"\nSweep failed: {e}")
        sys.exit(2)

    for key in orphans:
        print(f"   {key}")
    verb = "removed (best effort)" if args.delete else "found"
    print(f"\n{len(orphans)} orphaned object(s) {verb} under '{args.prefix}'.")


if __name__ == "__main__":
    main()
