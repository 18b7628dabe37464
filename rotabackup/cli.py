"""
Command line dispatcher.

Available as ``flask --app rotabackup backup <command>`` and as the
``rotabackup`` console script:

    rotabackup create /path/to/folder                  Create a full backup
    rotabackup create --incremental /path/to/folder    Create an incremental backup
    rotabackup create --dry-run /path/to/folder        Simulate a backup
    rotabackup restore <backup-file> --to <dir>        Restore a backup
    rotabackup list                                    List available backups
    rotabackup rotate                                  Apply the rotation policy
    rotabackup verify <backup-file>                    Re-verify a backup
"""

import click
from flask import current_app
from flask.cli import AppGroup, ScriptInfo

from rotabackup.backup.errors import BackupError
from rotabackup.backup.runner import BackupRunner
from rotabackup.config import BackupSettings
from rotabackup.models import BackupMode


backup_cli = AppGroup('backup', help='Create, verify, rotate and restore backups.')


def _runner() -> BackupRunner:
    settings = BackupSettings.from_mapping(current_app.config)
    return BackupRunner(settings)


def _fail(error: BackupError):
    click.echo(f"Error: {error}", err=True)
    click.get_current_context().exit(1)


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ('B', 'K', 'M', 'G'):
        if value < 1024:
            return f"{value:.0f}{unit}" if unit == 'B' else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}T"


@backup_cli.command('create')
@click.argument('source', type=click.Path(file_okay=False))
@click.option('--full', 'mode', flag_value=BackupMode.FULL.value, default=True,
              help='Create a full backup (default).')
@click.option('--incremental', 'mode', flag_value=BackupMode.INCREMENTAL.value,
              help='Store only files changed since the last incremental backup.')
@click.option('--dry-run', 'mode', flag_value=BackupMode.DRY_RUN.value,
              help='Show what would be backed up without writing anything.')
def create_command(source, mode):
    """Back up SOURCE and rotate old backups."""
    try:
        result, rotation = _runner().backup(source, BackupMode(mode))
    except BackupError as e:
        return _fail(e)

    if result.is_dry_run:
        click.echo(f"Dry run: would create {result.archive_path}")
        return

    click.echo(f"Backup created: {result.archive_path} ({_format_size(result.size_bytes)})")
    if rotation is not None and rotation.classification:
        click.echo(f"Rotation: kept {len(rotation.kept)}, deleted {len(rotation.deleted)}")
        if rotation.failed:
            click.echo(f"Warning: failed to delete {len(rotation.failed)} backup(s)", err=True)


@backup_cli.command('restore')
@click.argument('archive')
@click.option('--to', 'target', required=True, type=click.Path(file_okay=False),
              help='Folder to restore into.')
def restore_command(archive, target):
    """Restore ARCHIVE (a path or a backup name) into a folder."""
    try:
        result = _runner().restore(archive, target)
    except BackupError as e:
        return _fail(e)

    click.echo(f"Backup restored successfully to {result.target_dir}")
    if not result.checksum_verified:
        click.echo("Warning: no checksum file found, archive was not verified", err=True)


@backup_cli.command('list')
def list_command():
    """List available backups."""
    try:
        runner = _runner()
        archives, unrecognized = runner.list_archives()
    except BackupError as e:
        return _fail(e)

    click.echo(f"Available backups in {runner.settings.destination}:")
    click.echo("----------------------------------------")

    if not archives:
        click.echo("No backups found.")

    for info in archives:
        checksum = 'sha256' if info['has_checksum'] else 'no checksum'
        click.echo(
            f"{info['name']}  {_format_size(info['size']):>7}  "
            f"{info['modified']:%Y-%m-%d %H:%M}  {checksum}"
        )

    for filename in unrecognized:
        click.echo(f"{filename}  (unrecognized name, ignored by rotation)")


@backup_cli.command('rotate')
def rotate_command():
    """Apply the rotation policy without creating a backup."""
    try:
        rotation = _runner().rotate()
    except BackupError as e:
        return _fail(e)

    click.echo(f"Rotation: kept {len(rotation.kept)}, deleted {len(rotation.deleted)}")
    if rotation.failed:
        click.echo(f"Warning: failed to delete {len(rotation.failed)} backup(s)", err=True)


@backup_cli.command('verify')
@click.argument('archive')
def verify_command(archive):
    """Verify ARCHIVE against its checksum and read back its entries."""
    try:
        size = _runner().verify(archive)
    except BackupError as e:
        return _fail(e)

    click.echo(f"Backup verified: {archive} ({_format_size(size)})")


def main():
    """Console script entry point."""
    from rotabackup import create_app
    backup_cli.main(prog_name='rotabackup', obj=ScriptInfo(create_app=create_app))
