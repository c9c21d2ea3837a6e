#!/usr/bin/env python3
"""
Operator console for bulk imports.

Lists table types, writes import templates, infers file schemas, runs imports
and shows upload history.
"""

import argparse
import os
import signal
import sys
import uuid
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from app.core.config import settings
from app.core.logging_config import configure_logging
from app.db.session import get_session_local, init_db
from app.domain.imports.cancellation import CancellationToken
from app.domain.imports.detection import detect_table_type
from app.domain.imports.errors import BulkImportError, FileParseError
from app.domain.imports.history import DatabaseUploadHistory, LoggingUploadHistory, list_upload_history
from app.domain.imports.orchestrator import BulkImportService, ImportRequest
from app.domain.imports.parsing import UploadedFile, parse_file
from app.domain.imports.registry import build_default_registry
from app.domain.imports.results import ImportOutcome, ImportStatus, ProgressUpdate
from app.domain.imports.schema_inference import infer_schemas
from app.domain.imports.templates import SUPPORTED_FORMATS, TemplateGenerator
from app.domain.imports.validation import ValidationStrategy

STATUS_STYLES = {
    ImportStatus.COMPLETED: "green",
    ImportStatus.COMPLETED_WITH_ERRORS: "yellow",
    ImportStatus.FAILED: "red",
    ImportStatus.CANCELLED: "magenta",
}

# Error rows printed before the list is truncated
MAX_ERROR_ROWS = 100


def _read_files(paths: List[str]) -> List[UploadedFile]:
    files = []
    for path in paths:
        with open(path, "rb") as handle:
            files.append(UploadedFile(os.path.basename(path), handle.read()))
    return files


class BulkImportConsole:
    """Rich-formatted front end over the import services."""

    def __init__(self, console: Optional[Console] = None, session_factory=None):
        self.console = console or Console()
        self.registry = build_default_registry()
        self.session_factory = session_factory

    def _sessions(self):
        if self.session_factory is None:
            self.session_factory = get_session_local()
        return self.session_factory

    def list_tables(self) -> int:
        table = Table(title="Table Types")
        table.add_column("Table", style="cyan", no_wrap=True)
        table.add_column("Mode")
        table.add_column("Required columns")
        table.add_column("Optional columns", style="dim")
        for descriptor in self.registry.descriptors():
            optional = [column.name for column in descriptor.columns if not column.required]
            table.add_row(
                descriptor.table_type,
                "batch" if descriptor.batch_capable else "row",
                ", ".join(descriptor.required_columns),
                ", ".join(optional),
            )
        self.console.print(table)
        return 0

    def write_template(self, table_type: str, file_format: str, out_dir: str, include_examples: bool) -> int:
        template = TemplateGenerator(self.registry).generate(table_type, file_format, include_examples)
        os.makedirs(out_dir, exist_ok=True)
        path = os.path.join(out_dir, template.file_name)
        with open(path, "wb") as handle:
            handle.write(template.content)
        self.console.print(f"[green]Template written to[/green] {path}")
        return 0

    def show_schemas(self, paths: List[str]) -> int:
        schemas, errors = infer_schemas(_read_files(paths))
        for schema in schemas:
            table = Table(title=f"{schema.table_name} ({schema.file_name})")
            table.add_column("Field", style="cyan")
            table.add_column("Type")
            for item in schema.fields:
                table.add_row(item.name, item.data_type)
            self.console.print(table)
        for error in errors:
            self.console.print(f"[red]{error.file_name}:[/red] {error.message}")
        return 1 if errors and not schemas else 0

    def resolve_table_type(self, table_type: str, files: List[UploadedFile]) -> Optional[str]:
        if table_type.lower() != "auto":
            return table_type
        for uploaded in files:
            try:
                dataset = parse_file(uploaded.file_name, uploaded.content, content_type=uploaded.content_type)
            except FileParseError:
                continue
            detected = detect_table_type(dataset.columns, self.registry)
            if detected is not None:
                self.console.print(
                    f"[dim]Detected table type[/dim] [cyan]{detected.table_type}[/cyan] "
                    f"[dim](confidence {detected.confidence:.0%})[/dim]"
                )
                return detected.table_type
        return None

    def run_import(
        self,
        paths: List[str],
        table_type: str,
        user_id: Optional[str],
        ignore_errors: bool,
        batch_size: Optional[int],
        strategy: str,
        record_history: bool,
    ) -> int:
        files = _read_files(paths)
        resolved = self.resolve_table_type(table_type, files)
        if resolved is None:
            self.console.print("[red]Could not detect the table type; pass --table explicitly[/red]")
            return 2

        token = CancellationToken()
        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())

        sessions = self._sessions()
        history = DatabaseUploadHistory(sessions) if record_history else LoggingUploadHistory()
        with Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total} rows"),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Importing {resolved}", total=None)

            def on_progress(update: ProgressUpdate) -> None:
                progress.update(task, total=update.total, completed=update.processed)

            service = BulkImportService(
                registry=self.registry,
                session_factory=sessions,
                history=history,
                progress=on_progress,
            )
            request = ImportRequest(
                files=files,
                table_type=resolved,
                acting_user_id=user_id,
                ignore_errors=ignore_errors,
                batch_size=batch_size,
                validation_strategy=ValidationStrategy(strategy),
                job_id=str(uuid.uuid4()),
            )
            try:
                outcome = service.run(request, token)
            finally:
                signal.signal(signal.SIGINT, previous_handler)

        self.print_outcome(outcome)
        return 0 if outcome.status in (ImportStatus.COMPLETED, ImportStatus.COMPLETED_WITH_ERRORS) else 1

    def print_outcome(self, outcome: ImportOutcome) -> None:
        style = STATUS_STYLES.get(outcome.status, "white")
        summary = Table(show_header=True)
        summary.add_column("File", style="cyan")
        summary.add_column("Status")
        for name in ("Total", "Valid", "Invalid", "Succeeded", "Failed"):
            summary.add_column(name, justify="right")
        for item in outcome.files:
            summary.add_row(
                item.file_name or "",
                f"[{STATUS_STYLES.get(item.status, 'white')}]{item.status.value}[/]",
                str(item.total_rows),
                str(item.valid_rows),
                str(item.invalid_rows),
                str(item.succeeded_rows),
                str(item.failed_rows),
            )
        self.console.print(Panel(summary, title=f"[{style}]{outcome.status.value}[/]", subtitle=outcome.message))

        if not outcome.errors:
            return
        errors = Table(title="Errors")
        errors.add_column("File", style="cyan")
        errors.add_column("Row", justify="right")
        errors.add_column("Message", style="red")
        for error in outcome.errors[:MAX_ERROR_ROWS]:
            errors.add_row(error.file_name or "", str(error.row_number or "-"), "\n".join(error.messages))
        self.console.print(errors)
        if len(outcome.errors) > MAX_ERROR_ROWS:
            self.console.print(f"[dim]... {len(outcome.errors) - MAX_ERROR_ROWS} more error row(s)[/dim]")

    def show_history(self, user_id: Optional[str], limit: int) -> int:
        entries = list_upload_history(self._sessions(), user_id=user_id, limit=limit)
        table = Table(title="Upload History")
        for name in ("Started", "File", "Table", "Status", "Succeeded", "Failed"):
            table.add_column(name)
        for entry in entries:
            table.add_row(
                str(entry["started_at"] or ""),
                entry["file_name"],
                entry["table_type"] or "",
                entry["status"],
                str(entry["succeeded_rows"] or 0),
                str(entry["failed_rows"] or 0),
            )
        self.console.print(table)
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bulk Import Console - import users, roles and applications from files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s tables
  %(prog)s template Users --format xlsx --out ./templates
  %(prog)s import users.csv --table Users --user admin --ignore-errors
  %(prog)s import data.xlsx --table auto
        """
    )
    parser.add_argument('--init-db', action='store_true', help='Create database tables before running')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')

    commands = parser.add_subparsers(dest='command')

    commands.add_parser('tables', help='List supported table types')

    template = commands.add_parser('template', help='Write an import template')
    template.add_argument('table', help='Table type')
    template.add_argument('--format', choices=SUPPORTED_FORMATS, default='xlsx')
    template.add_argument('--out', default='.', help='Output directory (default: current directory)')
    template.add_argument('--no-examples', action='store_true', help='Leave out example rows')

    schema = commands.add_parser('schema', help='Infer the column schema of files')
    schema.add_argument('files', nargs='+')

    run = commands.add_parser('import', help='Import files into a table type')
    run.add_argument('files', nargs='+')
    run.add_argument('--table', required=True, help="Table type, or 'auto' to detect from headers")
    run.add_argument('--user', default=None, help='Acting user id recorded on created rows')
    run.add_argument('--ignore-errors', action='store_true', help='Import valid rows and skip invalid ones')
    run.add_argument('--batch-size', type=int, default=None, help='Rows per commit for large files')
    run.add_argument(
        '--strategy',
        choices=[strategy.value for strategy in ValidationStrategy],
        default=ValidationStrategy.AUTO.value,
        help='Validation strategy (default: auto)',
    )
    run.add_argument('--no-history', action='store_true', help='Do not record upload history rows')

    history = commands.add_parser('history', help='Show recent uploads')
    history.add_argument('--user', default=None)
    history.add_argument('--limit', type=int, default=20)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else settings.log_level, force=True)
    console = Console()

    if args.init_db:
        init_db()
        console.print("[green]Database tables are ready[/green]")

    app_console = BulkImportConsole(console)
    try:
        if args.command == 'tables':
            return app_console.list_tables()
        if args.command == 'template':
            return app_console.write_template(args.table, args.format, args.out, not args.no_examples)
        if args.command == 'schema':
            return app_console.show_schemas(args.files)
        if args.command == 'import':
            return app_console.run_import(
                args.files,
                args.table,
                args.user,
                args.ignore_errors,
                args.batch_size,
                args.strategy,
                not args.no_history,
            )
        if args.command == 'history':
            return app_console.show_history(args.user, args.limit)
    except BulkImportError as e:
        console.print(f"[red]❌ Error:[/red] {e.message}")
        return 2
    except OSError as e:
        console.print(f"[red]❌ Error:[/red] {e}")
        return 2

    if not args.init_db:
        parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
