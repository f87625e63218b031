#!/usr/bin/env python3
"""
migrate_storage.py  –  copy object storage from one account to another.

• Expects SRC_* and TGT_* credentials in the environment or in ./.env
  (see promptshelf/storage.py for the exact keys).
• Creates missing buckets on the target, then copies every object with
  overwrite.  --dry-run only lists what would be copied.

Run once, then point the site at the new storage.
"""

import logging
import sys

import click
from botocore.exceptions import BotoCoreError, ClientError

from promptshelf import storage


@click.command()
@click.option(
    "--buckets",
    envvar="BUCKETS",
    default="",
    help="Comma-separated bucket names to copy (default: all).",
)
@click.option(
    "--dry-run",
    envvar="DRY_RUN",
    is_flag=True,
    help="List objects without uploading anything.",
)
@click.option(
    "--concurrency",
    envvar="CONCURRENCY",
    default=storage.CONCURRENCY_DEFAULT,
    show_default=True,
    type=click.IntRange(min=1),
    help="Simultaneous object copies.",
)
def main(buckets: str, dry_run: bool, concurrency: int):
    """Copy every bucket from the SRC account into the TGT account."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    src_cfg = storage.storage_config("SRC")
    tgt_cfg = storage.storage_config("TGT")
    try:
        storage.require_config("SRC", src_cfg)
        storage.require_config("TGT", tgt_cfg)
    except storage.StorageConfigError as exc:
        click.secho(f"❌  {exc}", fg="red", err=True)
        sys.exit(1)

    wanted = [b.strip() for b in buckets.split(",") if b.strip()]

    click.echo("== Checking access to source and target ==")
    try:
        results = storage.migrate(
            storage.make_client(src_cfg),
            storage.make_client(tgt_cfg),
            buckets=wanted or None,
            concurrency=concurrency,
            dry_run=dry_run,
            echo=click.echo,
        )
    except (BotoCoreError, ClientError) as exc:
        click.secho(f"❌  {exc}", fg="red", err=True)
        sys.exit(1)

    failed = sum(r.failed for r in results)
    if failed:
        click.secho(f"\nDone with {failed} failed object(s).", fg="yellow")
        sys.exit(2)
    click.secho("\n✔  Done.", fg="green")


if __name__ == "__main__":
    main()
