"""Flask CLI commands for schema setup and timezone drift correction."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click
from flask import current_app
from flask.cli import AppGroup, with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from clinic_timefix.extensions import SQLAlchemyEngine
from clinic_timefix.services.backup import backup_entity, restore_entity, utc_stamp
from clinic_timefix.services.corrector import (
    CORRECTED,
    SKIPPED,
    CorrectionSummary,
    RecordOutcome,
    run_correction,
)
from clinic_timefix.services.database import store_scope
from clinic_timefix.services.drift import DriftWindow, format_timestamp, window_from_config
from clinic_timefix.services.errors import ConfigError, DriftError, FetchFailed, StoreUnavailable
from clinic_timefix.services.migrations import run_migrations
from clinic_timefix.services.records import ENTITIES, EntitySpec
from clinic_timefix.services.reports import write_run_report


ENTITY_CHOICES = [*ENTITIES, "all"]


def _selected_entities(name: str) -> list[EntitySpec]:
    if name == "all":
        return list(ENTITIES.values())
    return [ENTITIES[name]]


def _window() -> DriftWindow:
    try:
        return window_from_config(current_app.config)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


@contextmanager
def _open_store() -> Iterator[SQLAlchemyEngine]:
    """Store for the command; config and connection failures exit with status 1."""
    try:
        with store_scope(current_app) as store:
            yield store
    except (ConfigError, StoreUnavailable) as exc:
        current_app.logger.error("Drift run aborted: %s", exc)
        raise click.ClickException(str(exc)) from exc


def _data_dir(name: str) -> Path:
    return Path(current_app.config["DATA_ROOT"]) / name


def _echo_outcome(outcome: RecordOutcome, *, apply: bool) -> None:
    record = outcome.record
    who = f"{record.id} ({record.label})" if record.label else record.id
    if outcome.status == CORRECTED:
        verb = "Corrected" if apply else "Would correct"
        click.echo(f"{verb} {who}: {format_timestamp(outcome.before)} -> {format_timestamp(outcome.after)}")
    elif outcome.status == SKIPPED:
        click.echo(f"Skipped {who}: {format_timestamp(outcome.before)} is outside the suspect window")
    else:
        click.echo(f"Error {who}: {outcome.error}")


def _echo_summary(summary: CorrectionSummary, *, apply: bool) -> None:
    click.echo("")
    click.echo(f"Summary for {summary.entity}:")
    click.echo(f"  {'corrected' if apply else 'to correct'}: {summary.corrected}")
    click.echo(f"  skipped: {summary.skipped}")
    click.echo(f"  errored: {summary.errored}")
    click.echo(f"  total: {summary.total}")


def _run(entity_name: str, *, apply: bool, backup: bool) -> None:
    window = _window()
    stamp = utc_stamp()
    with _open_store() as store:
        for entity in _selected_entities(entity_name):
            if backup:
                try:
                    files = backup_entity(store, entity, _data_dir("backups"), stamp=stamp)
                except (SQLAlchemyError, OSError) as exc:
                    current_app.logger.error("Backup of %s failed: %s", entity.table, exc)
                    click.echo(f"Backup of {entity.table} failed, not correcting it: {exc}")
                    continue
                click.echo(f"Backup of {files.count} {entity.table} rows written to {files.json_path}")

            outcomes: list[RecordOutcome] = []

            def _report(outcome: RecordOutcome) -> None:
                outcomes.append(outcome)
                _echo_outcome(outcome, apply=apply)

            click.echo(f"Processing {entity.name} (window {window.from_hour}-{window.to_hour}h, +{window.offset_hours}h)")
            try:
                summary = run_correction(store, entity, window, apply=apply, report=_report)
            except FetchFailed as exc:
                current_app.logger.error("%s", exc)
                click.echo(f"Error: {exc}")
                continue
            _echo_summary(summary, apply=apply)
            if apply:
                report_path = write_run_report(_data_dir("reports"), window, summary, outcomes, stamp=stamp)
                click.echo(f"Report written to {report_path}")


def register_cli(app) -> None:
    db_group = AppGroup("db", help="Schema commands for local and test databases.")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        try:
            run_migrations(current_app)
        except ConfigError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo("Database upgraded to head.")

    app.cli.add_command(db_group)

    drift_group = AppGroup("drift", help="Find and fix timestamps stored hours behind their value.")
    entity_option = click.option(
        "--entity",
        type=click.Choice(ENTITY_CHOICES),
        default="appointments",
        show_default=True,
        help="Which records to process.",
    )

    @drift_group.command("analyze")
    @entity_option
    @with_appcontext
    def analyze(entity: str) -> None:
        """List suspect records and their proposed values without writing."""
        _run(entity, apply=False, backup=False)

    @drift_group.command("fix")
    @entity_option
    @click.option("--dry-run", is_flag=True, default=False, help="Report only, write nothing.")
    @click.option("--no-backup", is_flag=True, default=False, help="Skip the pre-fix backup.")
    @with_appcontext
    def fix(entity: str, dry_run: bool, no_backup: bool) -> None:
        """Shift suspect timestamps forward by the configured offset."""
        _run(entity, apply=not dry_run, backup=not (dry_run or no_backup))

    @drift_group.command("backup")
    @entity_option
    @with_appcontext
    def backup(entity: str) -> None:
        """Write JSON and SQL backups of the selected tables."""
        stamp = utc_stamp()
        with _open_store() as store:
            for spec in _selected_entities(entity):
                try:
                    files = backup_entity(store, spec, _data_dir("backups"), stamp=stamp)
                except (SQLAlchemyError, OSError) as exc:
                    current_app.logger.error("Backup of %s failed: %s", spec.table, exc)
                    raise click.ClickException(f"Backup of {spec.table} failed: {exc}") from exc
                click.echo(f"Backup of {files.count} {spec.table} rows written to {files.json_path}")
                click.echo(f"Restore script: {files.sql_path}")

    @drift_group.command("restore")
    @click.argument("backup_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
    @with_appcontext
    def restore(backup_file: Path) -> None:
        """Put timestamps back from a JSON backup."""
        with _open_store() as store:
            try:
                result = restore_entity(store, backup_file)
            except DriftError as exc:
                raise click.ClickException(str(exc)) from exc
        click.echo(f"Restored {result.restored} {result.entity} records, {result.errored} errors.")

    app.cli.add_command(drift_group)
