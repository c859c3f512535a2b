from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, Optional

import typer
import yaml
from pydantic import ValidationError
from typer.core import TyperGroup

from evvl.config import default_home, load_cli_config, store_path
from evvl.context import GitContextDetector
from evvl.errors import EvvlError, ProjectNotFound, RunNotFound, StoreIOError
from evvl.models import CliConfig, ExportFormat, RunRequest
from evvl.render import OutputRenderer
from evvl.resolver import RunResolver
from evvl.storage.fs import (
    JsonDataSetRepo,
    JsonDocumentStore,
    JsonEvaluationRunRepo,
    JsonModelConfigRepo,
    JsonProjectRepo,
    JsonPromptRepo,
    PendingRunQueue,
)

__version__ = "0.1.0"

ASK_COMMAND = "ask"


class _PromptFallbackGroup(TyperGroup):
    """Routes ``evvl "some prompt"`` to the hidden ask command."""

    def resolve_command(self, ctx: typer.Context, args: list[str]):
        if args and not args[0].startswith("-") and args[0] not in self.commands:
            return ASK_COMMAND, self.get_command(ctx, ASK_COMMAND), args
        return super().resolve_command(ctx, args)


app = typer.Typer(
    cls=_PromptFallbackGroup,
    help="evvl: AI model evaluation CLI (auto-detects the git repo as project)",
)
prompts_app = typer.Typer(help="list or test prompts")

app.add_typer(prompts_app, name="prompts")


@dataclass
class _GlobalOptions:
    home: Path
    json_output: bool
    open_gui: bool
    project: Optional[str]


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _options(ctx: typer.Context) -> _GlobalOptions:
    # Set by the root callback, which typer runs before any subcommand.
    return ctx.find_object(_GlobalOptions)


def _load_config(opts: _GlobalOptions) -> CliConfig:
    try:
        return load_cli_config(opts.home)
    except (yaml.YAMLError, ValidationError) as exc:
        _fail(f"Invalid configuration: {exc}")


def _open_store(opts: _GlobalOptions, config: CliConfig) -> JsonDocumentStore:
    return JsonDocumentStore(store_path(opts.home, config))


def _build_resolver(config: CliConfig, store: JsonDocumentStore) -> RunResolver:
    detector = GitContextDetector(timeout=config.git_timeout) if config.detect_context else None
    return RunResolver(
        projects=JsonProjectRepo(store),
        prompts=JsonPromptRepo(store),
        model_configs=JsonModelConfigRepo(store),
        data_sets=JsonDataSetRepo(store),
        queue=PendingRunQueue(store),
        detector=detector,
        default_models=config.default_models,
    )


def _read_piped_stdin() -> Optional[str]:
    stream = sys.stdin
    if stream is None or stream.isatty():
        return None
    text = stream.read().strip()
    return text or None


def _run_resolution(opts: _GlobalOptions, req: RunRequest) -> None:
    config = _load_config(opts)
    store = _open_store(opts, config)
    resolver = _build_resolver(config, store)
    try:
        resolved = resolver.resolve(req)
    except EvvlError as exc:
        _fail(str(exc))

    if not opts.json_output:
        for notice in resolved.notices:
            typer.echo(notice)
        for warning in resolved.warnings:
            typer.echo(f"Warning: {warning}", err=True)
    renderer = OutputRenderer(preview_width=config.prompt_preview_width)
    typer.echo(renderer.run_config(resolved, opts.json_output))


def _show_settings(opts: _GlobalOptions) -> None:
    config = _load_config(opts)
    store = _open_store(opts, config)
    paths = {
        "config": str(opts.home / "config.yaml"),
        "store": str(store.path),
        "collections": sorted(store.keys()),
    }
    if opts.json_output:
        typer.echo(json.dumps(paths, indent=2))
        return
    typer.echo("Settings are edited in the Evvl app. CLI settings live in:")
    typer.echo(f"  Config: {paths['config']}")
    typer.echo(f"  Store:  {paths['store']}")
    typer.echo(f"  Collections: {', '.join(paths['collections']) or '(none)'}")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"evvl {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-v", callback=_version_callback, is_eager=True, help="Print version information"
    ),
    settings: bool = typer.Option(False, "--settings", help="Show where settings are stored"),
    open_gui: bool = typer.Option(False, "--open", "-o", help="Queue the run for the GUI"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON (default when piped)"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name or ID"),
    home: Optional[Path] = typer.Option(
        None, "--home", envvar="EVVL_HOME", help="Directory holding store.json and config.yaml"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    _ = version
    _configure_logging(verbose)
    ctx.obj = _GlobalOptions(
        home=home or default_home(),
        json_output=json_output or not sys.stdout.isatty(),
        open_gui=open_gui,
        project=project,
    )
    if ctx.invoked_subcommand is None:
        if settings:
            _show_settings(ctx.obj)
            return
        typer.echo(ctx.get_help())


@app.command()
def run(
    ctx: typer.Context,
    prompt: Optional[str] = typer.Option(None, "--prompt", help="Prompt text (otherwise read from stdin)"),
    prompt_name: Optional[str] = typer.Option(None, "--prompt-name", help="Stored prompt to use or version"),
    version_note: Optional[str] = typer.Option(None, "--version-note", help="Note for a newly saved version"),
    models: Optional[str] = typer.Option(None, "--models", "-m", help="Comma-separated provider/model list"),
    dataset: Optional[str] = typer.Option(None, "--dataset", "-d", help="Dataset name"),
    no_dataset: bool = typer.Option(False, "--no-dataset", help="Run without a dataset"),
) -> None:
    """Run an evaluation with options."""
    opts = _options(ctx)
    _run_resolution(
        opts,
        RunRequest(
            prompt_text=prompt,
            stdin_text=_read_piped_stdin() if prompt is None else None,
            prompt_name=prompt_name,
            version_note=version_note,
            models=models,
            dataset=dataset,
            no_dataset=no_dataset,
            project=opts.project,
            json_output=opts.json_output,
            open_gui=opts.open_gui,
        ),
    )


@app.command(ASK_COMMAND, hidden=True)
def ask(
    ctx: typer.Context,
    words: Optional[list[str]] = typer.Argument(None, help="Prompt text to evaluate"),
    open_gui: bool = typer.Option(False, "--open", "-o"),
    json_output: bool = typer.Option(False, "--json"),
    project: Optional[str] = typer.Option(None, "--project", "-p"),
) -> None:
    opts = _options(ctx)
    opts.open_gui = opts.open_gui or open_gui
    opts.json_output = opts.json_output or json_output
    opts.project = project or opts.project
    text = " ".join(words or []) or None
    _run_resolution(
        opts,
        RunRequest(
            prompt_text=text,
            stdin_text=_read_piped_stdin() if text is None else None,
            project=opts.project,
            json_output=opts.json_output,
            open_gui=opts.open_gui,
        ),
    )


@app.command()
def projects(ctx: typer.Context) -> None:
    """List all projects."""
    opts = _options(ctx)
    config = _load_config(opts)
    repo = JsonProjectRepo(_open_store(opts, config))
    typer.echo(OutputRenderer().projects(repo.list(), opts.json_output))


def _list_prompts(opts: _GlobalOptions) -> None:
    config = _load_config(opts)
    store = _open_store(opts, config)
    project_repo = JsonProjectRepo(store)
    prompt_repo = JsonPromptRepo(store)

    if opts.project is not None:
        project = project_repo.find(opts.project)
        if project is None:
            _fail(str(ProjectNotFound(opts.project)))
        rows = prompt_repo.list_for_project(project.id)
    else:
        rows = prompt_repo.list()
    typer.echo(OutputRenderer().prompts(rows, project_repo.list(), opts.json_output))


@prompts_app.callback(invoke_without_command=True)
def prompts_main(ctx: typer.Context) -> None:
    """List prompts (optionally filtered with --project)."""
    if ctx.invoked_subcommand is None:
        _list_prompts(_options(ctx))


@prompts_app.command("list")
def prompts_list(ctx: typer.Context) -> None:
    _list_prompts(_options(ctx))


@prompts_app.command("test")
def prompts_test(ctx: typer.Context) -> None:
    _list_prompts(_options(ctx))


@app.command()
def export(
    ctx: typer.Context,
    run_id: Optional[str] = typer.Option(None, "--run", "-r", help="Run id (defaults to the latest completed run)"),
    fmt: ExportFormat = typer.Option(ExportFormat.JSON, "--format", "-f", help="json|csv"),
) -> None:
    """Export evaluation results."""
    opts = _options(ctx)
    config = _load_config(opts)
    store = _open_store(opts, config)
    runs = JsonEvaluationRunRepo(store)

    run = runs.get(run_id) if run_id is not None else runs.latest_completed()
    if run is None:
        _fail(str(RunNotFound(run_id)))

    typer.echo(
        OutputRenderer().export_run(
            run,
            JsonPromptRepo(store).list(),
            JsonModelConfigRepo(store).list(),
            fmt,
        )
    )


@app.command()
def pending(
    ctx: typer.Context,
    drain: bool = typer.Option(False, "--drain", help="Clear the queue after printing it"),
) -> None:
    """Show runs queued for the GUI."""
    opts = _options(ctx)
    config = _load_config(opts)
    queue = PendingRunQueue(_open_store(opts, config))
    try:
        runs = queue.drain() if drain else queue.peek()
    except StoreIOError as exc:
        _fail(str(exc))
    typer.echo(OutputRenderer().pending(runs, opts.json_output))


if __name__ == "__main__":
    app()
