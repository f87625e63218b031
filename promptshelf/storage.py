"""
Copy every object of one S3-compatible account into another.

Credentials come from the process environment first, then from a
``.env`` file next to where the tool is run:

    SRC_ACCOUNT_ID / SRC_ENDPOINT, SRC_ACCESS_KEY_ID, SRC_SECRET_ACCESS_KEY
    TGT_ACCOUNT_ID / TGT_ENDPOINT, TGT_ACCESS_KEY_ID, TGT_SECRET_ACCESS_KEY

Objects are streamed through a spooled temp file and uploaded with
overwrite semantics.  No resume, no retries: a failed object is logged
and counted.
"""

from __future__ import annotations

import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

import boto3
from botocore.exceptions import BotoCoreError, ClientError

log = logging.getLogger(__name__)

ENV_FILE = Path(os.environ.get("STORAGE_ENV_FILE", ".env"))
CRED_SUFFIXES = ("ACCOUNT_ID", "ENDPOINT", "ACCESS_KEY_ID", "SECRET_ACCESS_KEY")
LIST_PAGE = 1000
DRY_RUN_PREVIEW = 20
SPOOL_MAX_BYTES = 16 * 1024 * 1024
CONCURRENCY_DEFAULT = 4


class StorageConfigError(Exception):
    """Missing or incomplete credentials for one side of the copy."""


@dataclass
class BucketResult:
    bucket: str
    total: int = 0
    copied: int = 0
    failed: int = 0
    dry_run: bool = False


def _read_env_file(path: Path | None = None) -> dict[str, str]:
    path = path or ENV_FILE
    env = {}
    if not path.exists():
        return env
    for ln in path.read_text().splitlines():
        ln = ln.strip()
        if not ln or ln.startswith("#") or "=" not in ln:
            continue
        k, v = ln.split("=", 1)
        env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def storage_config(prefix: str, *, env_file: Path | None = None) -> dict[str, str]:
    """Collect ``<prefix>_*`` credentials, environment winning over the file."""
    file_env = _read_env_file(env_file)
    cfg = {}
    for suffix in CRED_SUFFIXES:
        key = f"{prefix}_{suffix}"
        val = (os.environ.get(key) or file_env.get(key) or "").strip()
        if val:
            cfg[suffix] = val
    return cfg


def require_config(prefix: str, cfg: dict[str, str]) -> None:
    missing = [
        f"{prefix}_{k}" for k in ("ACCESS_KEY_ID", "SECRET_ACCESS_KEY") if not cfg.get(k)
    ]
    if not (cfg.get("ENDPOINT") or cfg.get("ACCOUNT_ID")):
        missing.append(f"{prefix}_ENDPOINT (or {prefix}_ACCOUNT_ID)")
    if missing:
        raise StorageConfigError("Missing " + ", ".join(missing))


def make_client(cfg: dict[str, str]):
    endpoint = (
        cfg.get("ENDPOINT") or f"https://{cfg['ACCOUNT_ID']}.r2.cloudflarestorage.com"
    )
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        region_name="auto",
        aws_access_key_id=cfg["ACCESS_KEY_ID"],
        aws_secret_access_key=cfg["SECRET_ACCESS_KEY"],
    )


################################################################################
# Bucket helpers
################################################################################
def list_buckets(client) -> list[str]:
    return [b["Name"] for b in client.list_buckets().get("Buckets", [])]


def ensure_bucket(client, name: str, *, existing: list[str] | None = None) -> bool:
    """Create *name* on the target unless it already exists; True if created."""
    existing = list_buckets(client) if existing is None else existing
    if name in existing:
        return False
    client.create_bucket(Bucket=name)
    log.info("created target bucket %s", name)
    return True


def walk_objects(client, bucket: str) -> Iterator[str]:
    """Every key in *bucket*, one listing page at a time."""
    pages = client.get_paginator("list_objects_v2").paginate(
        Bucket=bucket, PaginationConfig={"PageSize": LIST_PAGE}
    )
    for page in pages:
        for obj in page.get("Contents", []):
            key = obj["Key"]
            if key.endswith("/") and not obj.get("Size"):
                continue  # folder placeholder
            yield key


def copy_object(src, tgt, bucket: str, key: str) -> None:
    obj = src.get_object(Bucket=bucket, Key=key)
    extra = {}
    if obj.get("ContentType"):
        extra["ContentType"] = obj["ContentType"]
    with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as buf:
        for chunk in iter(lambda: obj["Body"].read(1024 * 1024), b""):
            buf.write(chunk)
        buf.seek(0)
        tgt.upload_fileobj(buf, bucket, key, ExtraArgs=extra or None)


################################################################################
# Whole-run driver
################################################################################
def copy_bucket(
    src,
    tgt,
    bucket: str,
    *,
    concurrency: int = CONCURRENCY_DEFAULT,
    dry_run: bool = False,
    echo: Callable[[str], None] = print,
) -> BucketResult:
    keys = list(walk_objects(src, bucket))
    result = BucketResult(bucket=bucket, total=len(keys), dry_run=dry_run)
    if not keys:
        echo("  (empty)")
        return result

    echo(f"  Objects to copy: {len(keys)}")
    if dry_run:
        for k in keys[:DRY_RUN_PREVIEW]:
            echo(f"  • {k}")
        if len(keys) > DRY_RUN_PREVIEW:
            echo(f"  • … ({len(keys) - DRY_RUN_PREVIEW} more)")
        echo("  dry run – nothing uploaded.")
        return result

    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        futures = {pool.submit(copy_object, src, tgt, bucket, k): k for k in keys}
        for fut in as_completed(futures):
            try:
                fut.result()
                result.copied += 1
            except (BotoCoreError, ClientError, OSError) as exc:
                result.failed += 1
                log.warning("copy failed for %s/%s: %s", bucket, futures[fut], exc)
                echo(f"  ✗ {futures[fut]} – {exc}")

    echo(f"  ✓ copied: {result.copied} – ✗ failed: {result.failed}")
    return result


def migrate(
    src,
    tgt,
    *,
    buckets: list[str] | None = None,
    concurrency: int = CONCURRENCY_DEFAULT,
    dry_run: bool = False,
    echo: Callable[[str], None] = print,
) -> list[BucketResult]:
    """
    Copy every source bucket (or only *buckets*) into the target account.
    Missing target buckets are created first, even on a dry run.
    """
    src_buckets = list_buckets(src)
    tgt_buckets = list_buckets(tgt)
    echo(f"Source: {len(src_buckets)} buckets")
    echo(f"Target: {len(tgt_buckets)} buckets")

    wanted = [b for b in src_buckets if not buckets or b in buckets]
    if buckets and not wanted:
        echo("No source bucket matches the requested names.")
        return []

    results = []
    for name in wanted:
        echo(f"\n== Bucket: {name} ==")
        if ensure_bucket(tgt, name, existing=tgt_buckets):
            echo(f"  [+] created target bucket {name}")
            tgt_buckets.append(name)
        results.append(
            copy_bucket(
                src, tgt, name, concurrency=concurrency, dry_run=dry_run, echo=echo
            )
        )
    return results
