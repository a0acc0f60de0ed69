"""Typer based command line entry points for TemplateFlow."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, replace
from pathlib import Path
from typing import List, Optional

import typer

from templateflow.config import AppConfig, load_config
from templateflow.core.errors import ConfigError, TemplateFlowError
from templateflow.core.logger import get_logger
from templateflow.core.pipeline import GenerationOrchestrator
from templateflow.core.profiles import ensure_work_dirs
from templateflow.core.progress import LoggingProgressSink
from templateflow.services.storage import store_from_settings
from templateflow.services.template_cache import TemplateCache
from templateflow.services.upload import ChunkedUploader, UploadProgress, plan
from templateflow.services.upload.planner import QUALITY_HINTS
from templateflow_io import FillOptions, SpreadsheetTemplateEngine, group_rows, load_dataset
from templateflow_io.content_types import file_extension, output_file_name

app = typer.Typer(help="Generate documents from cached spreadsheet templates.")
cache_app = typer.Typer(name="cache", help="Inspect and maintain the local template cache.")
app.add_typer(cache_app, name="cache")

_STATE: dict[str, Optional[Path]] = {"config": None}


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        help="Set global logging level (e.g. DEBUG/INFO/WARNING).",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to profiles.yaml (defaults to templateflow/config/profiles.yaml).",
    ),
) -> None:
    """Configure global CLI behaviour before executing commands."""

    logger = get_logger()
    level_value = getattr(logging, log_level.upper(), None)
    if not isinstance(level_value, int):
        raise typer.BadParameter(f"Unknown log level: {log_level}")
    logger.setLevel(level_value)
    logging.getLogger("templateflow_io").setLevel(level_value)
    _STATE["config"] = config


def _load_config() -> AppConfig:
    try:
        return load_config(_STATE["config"])
    except ConfigError as exc:
        get_logger().error("cli.config_error %s", exc)
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


def _handle_error(exc: Exception) -> None:
    get_logger().error("cli.failed %s: %s", type(exc).__name__, exc)
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def _progress(progress: UploadProgress) -> None:
    total = progress.total_bytes or 0
    percent = 0.0 if not total else (progress.uploaded_bytes / total) * 100
    parts = f"{progress.completed_parts}/{progress.total_parts}"
    typer.secho(
        f"{progress.state:>11} {parts:>7} {percent:6.1f}% ({progress.uploaded_bytes}/{total})",
        err=True,
    )


def _validate_hint(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.lower()
    if value not in QUALITY_HINTS:
        raise typer.BadParameter(f"hint must be one of {', '.join(QUALITY_HINTS)}")
    return value


def _split_keys(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    keys = [item.strip() for item in value.split(",") if item.strip()]
    return keys or None


def _fill_options(
    config: AppConfig,
    mapping: Optional[Path],
    sheet: Optional[str],
    order: Optional[str],
    keep_anchor_row: bool,
) -> FillOptions:
    mapping_path = mapping or config.mapping_file
    try:
        if mapping_path is not None and mapping_path.exists():
            options = FillOptions.from_yaml(mapping_path)
        elif mapping is not None:
            raise ConfigError(f"Mapping file not found: {mapping}")
        else:
            options = FillOptions()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    if sheet:
        options = replace(options, sheet_name=sheet)
    if keep_anchor_row:
        options = replace(options, keep_anchor_row=True)
    keys = _split_keys(order)
    if keys is not None:
        options = options.with_group_order(keys)
    return options


@app.command("plan")
def cmd_plan(
    size: int = typer.Argument(..., min=0, help="Payload size in bytes."),
    hint: Optional[str] = typer.Option(None, "--hint", callback=_validate_hint, help="Network quality hint (slow/fast)."),
) -> None:
    """Show how a payload of SIZE bytes would be uploaded."""

    typer.echo(json.dumps(asdict(plan(size, hint))))


@app.command("fill")
def cmd_fill(
    template: Path = typer.Argument(..., exists=True, dir_okay=False, resolve_path=True, help="Template workbook."),
    dataset: Path = typer.Argument(..., exists=True, dir_okay=False, resolve_path=True, help="CSV/Excel dataset."),
    out: Path = typer.Option(..., "--out", help="Output workbook path."),
    mapping: Optional[Path] = typer.Option(None, "--mapping", help="Fill options YAML."),
    sheet: Optional[str] = typer.Option(None, "--sheet", help="Target sheet name."),
    order: Optional[str] = typer.Option(None, "--order", help="Comma separated group keys, in output order."),
    key_prefix: str = typer.Option("", "--key-prefix", help="Prefix for parent row keys."),
    keep_anchor_row: bool = typer.Option(False, "--keep-anchor-row", help="Write the first row into the anchor row."),
) -> None:
    """Fill a local template with a local dataset (no object store involved)."""

    config = _load_config()
    options = _fill_options(config, mapping, sheet, order, keep_anchor_row)
    options = options.with_extension(file_extension(template.name))
    try:
        groups = group_rows(load_dataset(dataset), key_prefix=key_prefix)
        content = SpreadsheetTemplateEngine().fill(template.read_bytes(), groups, options)
    except (TemplateFlowError, ValueError, OSError) as exc:
        _handle_error(exc)
    else:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(content)
        typer.echo(str(out))


@app.command("generate")
def cmd_generate(
    category: str = typer.Argument(..., help="Template category (e.g. marketplace/country)."),
    key: str = typer.Argument(..., help="Template key within the category."),
    dataset: Path = typer.Argument(..., exists=True, dir_okay=False, resolve_path=True, help="CSV/Excel dataset."),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", help="Directory for the generated document."),
    mapping: Optional[Path] = typer.Option(None, "--mapping", help="Fill options YAML."),
    sheet: Optional[str] = typer.Option(None, "--sheet", help="Target sheet name."),
    order: Optional[str] = typer.Option(None, "--order", help="Comma separated group keys, in output order."),
    key_prefix: Optional[str] = typer.Option(None, "--key-prefix", help="Prefix for parent row keys (defaults to category)."),
    keep_anchor_row: bool = typer.Option(False, "--keep-anchor-row", help="Write the first row into the anchor row."),
    publish: bool = typer.Option(False, "--publish/--no-publish", help="Upload the generated document."),
    hint: Optional[str] = typer.Option(None, "--hint", callback=_validate_hint, help="Network quality hint (slow/fast)."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Deadline in seconds for fetch and upload."),
) -> None:
    """Fetch the current template, fill DATASET into it and save the result."""

    config = _load_config()
    options = _fill_options(config, mapping, sheet, order, keep_anchor_row)
    try:
        orchestrator = GenerationOrchestrator.from_config(config, sink=LoggingProgressSink())
        groups = group_rows(load_dataset(dataset), key_prefix=category if key_prefix is None else key_prefix)
        document = orchestrator.generate(category, key, groups, options, timeout=timeout)
        target_dir = out_dir or ensure_work_dirs()["out"]
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / document.file_name
        target.write_bytes(document.content)
        typer.echo(str(target))
        if publish:
            info = orchestrator.publish(
                document,
                category=category,
                subcategory=key,
                quality_hint=hint or config.upload.quality_hint,
                timeout=timeout if timeout is not None else config.upload.timeout_sec,
                progress_cb=_progress,
            )
            typer.echo(info.key)
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    except (TemplateFlowError, ValueError, OSError) as exc:
        _handle_error(exc)


@app.command("publish")
def cmd_publish(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, resolve_path=True, help="Local file path."),
    category: str = typer.Option(..., "--category", help="Document category."),
    kind: Optional[str] = typer.Option(None, "--kind", help="Top-level key segment (defaults to upload.kind)."),
    subcategory: Optional[str] = typer.Option(None, "--subcategory", help="Optional key sub-folder."),
    name: Optional[str] = typer.Option(None, "--name", help="Override the stored original file name."),
    hint: Optional[str] = typer.Option(None, "--hint", callback=_validate_hint, help="Network quality hint (slow/fast)."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Upload deadline in seconds."),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Display upload progress."),
) -> None:
    """Upload a local document to the object store."""

    config = _load_config()
    try:
        uploader = ChunkedUploader(store_from_settings(config.store))
        info = uploader.publish_document(
            kind or config.upload.kind,
            category,
            name or file.name,
            file.read_bytes(),
            subcategory=subcategory,
            quality_hint=hint or config.upload.quality_hint,
            timeout=timeout if timeout is not None else config.upload.timeout_sec,
            progress_cb=_progress if progress else None,
        )
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    except (TemplateFlowError, OSError) as exc:
        _handle_error(exc)
    else:
        typer.echo(info.key)


def _template_cache(config: AppConfig) -> TemplateCache:
    try:
        return TemplateCache.from_settings(store_from_settings(config.store), config.cache)
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


@cache_app.command("get")
def cache_get(
    category: str = typer.Argument(..., help="Template category."),
    key: str = typer.Argument(..., help="Template key."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the template bytes to this path."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Fetch deadline in seconds."),
) -> None:
    """Resolve a template through the cache."""

    cache = _template_cache(_load_config())
    try:
        entry = cache.get_template(category, key, timeout=timeout)
    except TemplateFlowError as exc:
        _handle_error(exc)
    else:
        if out is not None:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(entry.content)
        source = "cache" if entry.from_cache else "store"
        typer.echo(f"{entry.file_name} {entry.size} bytes ({source})")


@cache_app.command("clear")
def cache_clear(
    category: Optional[str] = typer.Option(None, "--category", help="Only clear this category."),
) -> None:
    """Delete cached templates."""

    removed = _template_cache(_load_config()).clear(category)
    typer.echo(f"removed {removed} file(s)")


@cache_app.command("stats")
def cache_stats() -> None:
    """Print cache size statistics as JSON."""

    stats = _template_cache(_load_config()).stats()
    typer.echo(json.dumps({"totalFiles": stats.total_files, "totalSize": stats.total_size, "entries": stats.entries}))


@cache_app.command("purge")
def cache_purge() -> None:
    """Remove expired or unreadable cache entries."""

    removed = _template_cache(_load_config()).purge_expired()
    typer.echo(f"purged {removed} entr{'y' if removed == 1 else 'ies'}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
