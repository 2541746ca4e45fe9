"""Operator maintenance commands for the document store.

Why:
    Some repairs are cheaper as a one-off sweep than as request-time logic:
    running the profile self-heal for every stored user after defaults
    change, and copying the text type of drafts onto published copies that
    were published before the field existed.

Usage:
    python -m backend.tools.maintenance ensure-profiles
    python -m backend.tools.maintenance backfill-text-type --dry-run

Notes:
    - Idempotent: re-running changes nothing once the data is consistent.
    - The store comes from the same env configuration as the web app
      (`SKOLE_DATABASE_URL`, `SKOLE_STORE`); tests pass one via `obj`.
"""

from __future__ import annotations

import logging

import click

from backend.identity_access.profiles import ProfileStore
from backend.storage.bootstrap import build_default_store
from backend.storage.config import LESSONS, PUBLISHED_LESSONS, collection_name
from backend.storage.ports import DocumentStore, server_timestamp

logger = logging.getLogger("skole.tools")

TEXT_TYPE_KEYS = ("textType", "texttype")


def _store(ctx: click.Context) -> DocumentStore:
    obj = ctx.ensure_object(dict)
    if obj.get("store") is None:
        obj["store"] = build_default_store()
    return obj["store"]


def ensure_all_profiles(store: DocumentStore) -> dict[str, int]:
    """Run the login self-heal for every stored profile; returns counts."""
    profiles = ProfileStore(store)
    counts = {"checked": 0, "patched": 0}
    for uid in profiles.iter_uids():
        result = profiles.ensure_profile(uid)
        counts["checked"] += 1
        if result.patched:
            counts["patched"] += 1
    return counts


def backfill_text_type(store: DocumentStore, *, dry_run: bool = False) -> dict[str, int]:
    """Copy `textType` from the draft onto published copies that lack it.

    Published copies whose draft is gone, or whose draft has no text type,
    are counted as skipped.
    """
    published = collection_name(PUBLISHED_LESSONS)
    drafts = collection_name(LESSONS)
    counts = {"updated": 0, "skipped": 0}
    for doc in store.query(published):
        if any(doc.data.get(k) for k in TEXT_TYPE_KEYS):
            continue
        lesson_id = doc.data.get("lessonId") or doc.id
        draft = store.get(drafts, str(lesson_id))
        value = next((draft.get(k) for k in TEXT_TYPE_KEYS if draft and draft.get(k)), None)
        if not value:
            counts["skipped"] += 1
            continue
        if not dry_run:
            store.set(published, doc.id, {"textType": value, "texttype": value, "updatedAt": server_timestamp()}, merge=True)
        counts["updated"] += 1
        logger.info("text type backfilled published=%s dry_run=%s", doc.id, dry_run)
    return counts


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Maintenance sweeps over users and published lessons."""
    ctx.ensure_object(dict)


@cli.command("ensure-profiles")
@click.pass_context
def ensure_profiles_cmd(ctx: click.Context) -> None:
    """Backfill missing profile defaults for every user."""
    counts = ensure_all_profiles(_store(ctx))
    click.echo("Checked {checked} profiles, patched {patched}.".format(**counts))


@cli.command("backfill-text-type")
@click.option("--dry-run", is_flag=True, help="Report what would change without writing.")
@click.pass_context
def backfill_text_type_cmd(ctx: click.Context, dry_run: bool) -> None:
    """Copy textType from drafts onto published lessons missing it."""
    counts = backfill_text_type(_store(ctx), dry_run=dry_run)
    prefix = "Would update" if dry_run else "Updated"
    click.echo(f"{prefix} {counts['updated']} published lessons, skipped {counts['skipped']}.")


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
