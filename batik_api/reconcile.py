"""Orphan-blob reconciliation.

A blob written by intake whose record insert then failed (or a record
deleted while its blob survived a failed delete) is left behind in the
blob store. These helpers find blobs under the image directory that no
entry references and optionally remove them. Dry-run by default.
"""
from __future__ import annotations

import logging

import click
from flask import current_app

from batik_api.audit_logging import audit_event
from batik_api.db_adapter import Batik, db
from batik_api.s3_adapter import get_blob_store

logger = logging.getLogger(__name__)


def referenced_keys() -> set[str]:
    return {path for (path,) in db.session.query(Batik.path).all()}


def find_orphan_blobs(store=None, directory: str | None = None) -> list[str]:
    store = store or get_blob_store()
    directory = directory or current_app.config.get("IMAGE_DIRECTORY", "batik_images")
    known = referenced_keys()
    orphans = [key for key in store.list_keys(directory) if key not in known]
    logger.info("Found %d orphaned blobs under %s", len(orphans), directory)
    return orphans


def sweep_orphan_blobs(apply: bool = False, store=None) -> list[str]:
    """Return the orphaned keys; delete them only when `apply` is set."""
    store = store or get_blob_store()
    orphans = find_orphan_blobs(store)
    if not apply:
        for key in orphans:
            logger.info("Would delete orphan blob: %s", key)
        return orphans

    removed = []
    for key in orphans:
        try:
            if store.delete(key):
                removed.append(key)
        except Exception as e:
            logger.error("Failed to delete orphan blob %s: %s", key, e)
    audit_event("orphan_sweep", found=len(orphans), deleted=len(removed))
    return removed


def register_commands(app) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create the catalog tables."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("sweep-orphans")
    @click.option("--apply", is_flag=True, help="Delete the orphaned blobs instead of listing them.")
    def sweep_orphans_command(apply: bool):
        """List (or delete) blobs that no batik entry references."""
        keys = sweep_orphan_blobs(apply=apply)
        for key in keys:
            click.echo(key)
        verb = "Deleted" if apply else "Found"
        click.echo(f"{verb} {len(keys)} orphaned blob(s).")
