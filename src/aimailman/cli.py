"""aimailman command-line interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer

from . import __version__
from .config import Config, ConfigError, load_config, resolve_config_path
from .folders import FolderCache, FolderPathResolver, PathResolutionError
from .gateway import ClassificationGateway
from .graph import GraphMailStore
from .llm import LanguageModelClient, OpenAIChatClient
from .logging import configure_logging
from .pipeline import CycleReport, ProcessingCycleOrchestrator
from .prompts import SYSTEM_PROMPT, load_template
from .runtime import CycleScheduler, ReloadResult
from .store import DryRunMailStore, MailStore, close_store
from .types import ClassificationDecision, ClassifierError, MoveToFolder

app = typer.Typer(help="AI mailbox triage daemon for Microsoft 365.")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None
    dry_run: bool = False


@app.callback()
def _aimailman(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to config (env AIMAILMAN_CONFIG or ~/.config/aimailman/config.yaml).",
        ),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Classify mail but only log folder creation, moves, and tagging.",
        ),
    ] = False,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved, dry_run=dry_run)


@app.command()
def daemon(ctx: typer.Context) -> None:
    """Run processing cycles until SIGTERM or SIGINT."""

    state = _state(ctx)
    config = _load_environment(state)
    store = _build_mail_store(config, dry_run=state.dry_run)

    def reload_callback() -> ReloadResult:
        nonlocal config, store
        new_config = load_config(state.config_path)
        new_store = _build_mail_store(new_config, dry_run=state.dry_run)
        try:
            orchestrator = _build_orchestrator(new_config, new_store)
        except Exception:
            close_store(new_store)
            raise
        close_store(store)
        config, store = new_config, new_store
        configure_logging(config.logging, config.root_dir)
        return ReloadResult(
            orchestrator=orchestrator,
            interval_seconds=config.processing.polling_interval_seconds,
        )

    def status_callback(snapshot: dict[str, Any]) -> str | None:
        return _format_status_message(snapshot)

    try:
        scheduler = CycleScheduler(
            _orchestrator_or_exit(config, store),
            interval_seconds=config.processing.polling_interval_seconds,
            reload_callback=reload_callback,
            status_callback=status_callback,
        )
        if state.dry_run:
            LOGGER.info("Dry-run mode: no folders, moves, or categories will be written.")
        scheduler.run()
    finally:
        close_store(store)


@app.command("run-once")
def run_once(ctx: typer.Context) -> None:
    """Run a single processing cycle and print its report."""

    state = _state(ctx)
    config = _load_environment(state)
    store = _build_mail_store(config, dry_run=state.dry_run)
    try:
        report = _orchestrator_or_exit(config, store).run_cycle()
    finally:
        close_store(store)
    _print_report(report)


@app.command()
def classify(
    ctx: typer.Context,
    message_id: Annotated[str, typer.Argument(..., help="Graph id of the message to classify.")],
) -> None:
    """Classify one untagged message from the source folder."""

    state = _state(ctx)
    config = _load_environment(state)
    store = _build_mail_store(config, dry_run=state.dry_run)
    try:
        orchestrator = _orchestrator_or_exit(config, store)
        candidates = orchestrator.fetch_candidates()
        candidate = next((item for item in candidates if item.id == message_id), None)
        if candidate is None:
            typer.secho(
                f"Message {message_id} is not an untagged candidate in "
                f"'{config.mailbox.source_folder}'.",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        decision = orchestrator.process_message(candidate)
    finally:
        close_store(store)

    if decision is None:
        typer.secho("Processing failed; see the log for details.", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(f"Message: {candidate.id}")
    typer.echo(f"From: {candidate.sender}")
    typer.echo(f"Subject: {candidate.subject}")
    typer.echo("Decision:")
    for line in _describe_decision(decision):
        typer.echo(f"  {line}")
    if isinstance(decision, ClassifierError):
        raise typer.Exit(1)


@app.command()
def resolve(
    ctx: typer.Context,
    path: Annotated[str, typer.Argument(..., help="Folder path such as 'Mailman/Newsletters'.")],
    no_create: Annotated[
        bool,
        typer.Option("--no-create", help="Only look the path up; never create folders."),
    ] = False,
) -> None:
    """Resolve a folder path to its mailbox folder id."""

    state = _state(ctx)
    config = _load_environment(state)
    store = _build_mail_store(config, dry_run=state.dry_run)
    resolver = FolderPathResolver(store)
    owner_id = config.mailbox.owner_id
    try:
        if no_create:
            folder_id = resolver.find(owner_id, path)
        else:
            folder_id = resolver.resolve(owner_id, path)
    except PathResolutionError as exc:
        typer.secho(f"Could not resolve '{path}': {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc
    finally:
        close_store(store)

    if folder_id is None:
        typer.secho(f"Folder '{path}' does not exist.", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(folder_id)


@app.command()
def status(ctx: typer.Context) -> None:
    """Display the effective configuration."""

    state = _state(ctx)
    config = _load_config(state.config_path)
    processing = config.processing

    typer.echo("→ aimailman status")
    typer.echo(f"Version: {__version__}")
    typer.echo(f"Config path: {resolve_config_path(state.config_path)}")
    typer.echo(f"Root dir: {config.root_dir}")
    typer.echo(f"Mailbox: {config.mailbox.owner_id}")
    typer.echo(f"Source folder: {config.mailbox.source_folder}")
    typer.echo(f"Review category: {config.mailbox.review_category}")
    typer.echo(f"Polling interval: {processing.polling_interval_seconds}s")
    typer.echo(f"Max emails per run: {processing.max_emails_per_run}")
    typer.echo(
        f"Eligibility window: {processing.min_email_age} .. {processing.max_email_age}"
    )
    typer.echo(f"Language model: {config.llm.model} ({config.llm.service})")
    typer.echo("")
    typer.echo("Destination folders:")
    if not processing.target_folders:
        typer.echo("  (none configured)")
    for name, folder in processing.target_folders.items():
        typer.echo(f"  - {name}: {folder}")


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _load_environment(state: CLIState) -> Config:
    config = _load_config(state.config_path)
    configure_logging(config.logging, config.root_dir)
    return config


def _load_config(path: Path | None) -> Config:
    try:
        return load_config(path)
    except ConfigError as exc:
        _config_failure(exc)


def _config_failure(exc: ConfigError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(2) from exc


def _build_mail_store(config: Config, *, dry_run: bool = False) -> MailStore:
    store: MailStore = GraphMailStore.from_config(config.graph)
    if dry_run:
        return DryRunMailStore(store)
    return store


def _build_language_model(config: Config) -> LanguageModelClient:
    return OpenAIChatClient.from_config(config.llm)


def _build_orchestrator(
    config: Config,
    store: MailStore,
    *,
    cache: FolderCache | None = None,
) -> ProcessingCycleOrchestrator:
    processing = config.processing
    try:
        template = load_template(processing.prompt_file)
    except OSError as exc:
        raise ConfigError(f"Cannot read prompt file {processing.prompt_file}: {exc}") from exc
    resolver = FolderPathResolver(store, cache)
    gateway = ClassificationGateway(
        llm=_build_language_model(config),
        resolver=resolver,
        store=store,
        owner_id=config.mailbox.owner_id,
        target_folders=processing.target_folders.values(),
        template=template,
        system_prompt=processing.system_prompt or SYSTEM_PROMPT,
        subject_max_length=processing.subject_max_length,
        body_max_length=processing.body_max_length,
    )
    return ProcessingCycleOrchestrator(
        store=store,
        resolver=resolver,
        gateway=gateway,
        owner_id=config.mailbox.owner_id,
        source_folder=config.mailbox.source_folder,
        review_category=config.mailbox.review_category,
        window=processing.window,
        max_emails_per_run=processing.max_emails_per_run,
    )


def _orchestrator_or_exit(config: Config, store: MailStore) -> ProcessingCycleOrchestrator:
    try:
        return _build_orchestrator(config, store)
    except ConfigError as exc:
        _config_failure(exc)


def _describe_decision(decision: ClassificationDecision) -> list[str]:
    if isinstance(decision, MoveToFolder):
        lines = ["action: move", f"folder: {decision.folder_path}"]
        if decision.explanation:
            lines.append(f"explanation: {decision.explanation}")
        return lines
    if isinstance(decision, ClassifierError):
        return ["action: error", f"message: {decision.message}"]
    return ["action: none", f"explanation: {decision.explanation}"]


def _print_report(report: CycleReport) -> None:
    typer.echo(f"Fetched: {report.fetched}")
    typer.echo(f"Moved: {report.moved}")
    typer.echo(f"No action: {report.no_action}")
    typer.echo(f"Classifier errors: {report.classifier_errors}")
    typer.echo(f"Failures: {report.failures}")
    typer.echo(f"Skipped: {report.skipped}")
    typer.echo(f"Tagged: {report.tagged}")
    if report.cancelled:
        typer.echo("Cycle was cancelled before all messages were processed.")


def _format_status_message(snapshot: dict[str, Any]) -> str:
    folder_summary = ", ".join(
        f"{folder}={count}" for folder, count in sorted(snapshot["folder_moves"].items())
    )
    lines = [
        f"aimailman daemon ({snapshot['owner']}, every {snapshot['interval_seconds']}s) status:",
        f"  cycles={snapshot['cycles']} fetched={snapshot['fetched']} "
        f"moved={snapshot['moved']} no_action={snapshot['no_action']} "
        f"errors={snapshot['classifier_errors']} failures={snapshot['failures']} "
        f"tagged={snapshot['tagged']}",
        f"  moves: {folder_summary or 'none'}",
    ]
    if snapshot.get("last_cycle"):
        lines.append(f"  last cycle: {snapshot['last_cycle']}")
    return "\n".join(lines)


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
