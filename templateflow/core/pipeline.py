from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Sequence

from templateflow.config import AppConfig
from templateflow.services.storage import ObjectInfo, store_from_settings
from templateflow.services.template_cache import TemplateCache
from templateflow.services.upload import ChunkedUploader, ProgressCallback
from templateflow_io import FillOptions, RowGroup, SpreadsheetTemplateEngine, select_groups
from templateflow_io.content_types import content_type_for, output_file_name

from .errors import ConfigError
from .logger import get_logger
from .progress import NullProgressSink, ProgressSink


@dataclass(slots=True)
class GeneratedDocument:
    content: bytes
    file_name: str
    file_extension: str
    content_type: str
    rows_written: int
    template_from_cache: bool

    @property
    def size(self) -> int:
        return len(self.content)


class GenerationOrchestrator:
    """Coordinates Template cache -> Fill -> (optional) Publish steps."""

    def __init__(
        self,
        cache: TemplateCache,
        engine: SpreadsheetTemplateEngine | None = None,
        uploader: ChunkedUploader | None = None,
        sink: ProgressSink | None = None,
        *,
        file_prefix: str | None = None,
        default_kind: str = "documents",
        logger: logging.Logger | None = None,
    ) -> None:
        self.logger = logger or get_logger()
        self.cache = cache
        self.engine = engine or SpreadsheetTemplateEngine()
        self.uploader = uploader
        self.sink = sink or NullProgressSink()
        self.file_prefix = file_prefix
        self.default_kind = default_kind

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        sink: ProgressSink | None = None,
        logger: logging.Logger | None = None,
    ) -> "GenerationOrchestrator":
        store = store_from_settings(config.store)
        return cls(
            TemplateCache.from_settings(store, config.cache, logger=logger),
            SpreadsheetTemplateEngine(),
            ChunkedUploader(store, logger=logger),
            sink,
            default_kind=config.upload.kind,
            logger=logger,
        )

    def generate(
        self,
        category: str,
        key: str,
        row_groups: Sequence[RowGroup],
        options: FillOptions | None = None,
        *,
        task_id: str | None = None,
        timeout: float | None = None,
    ) -> GeneratedDocument:
        """Fetch the template for ``category``/``key`` and fill ``row_groups`` into it.

        The cached template bytes and extension are passed to the engine
        unchanged. A failing fill leaves the cache entry in place.
        """

        task_id = task_id or uuid.uuid4().hex
        options = options or FillOptions()

        def progress(pct: int, message: str) -> None:
            self.sink.progress(task_id, pct, message)
            self.logger.info("pipeline.progress task=%s pct=%d %s", task_id, pct, message)

        try:
            progress(10, f"Fetching template {category}/{key}")
            entry = self.cache.get_template(category, key, timeout=timeout)

            progress(40, f"Filling {entry.file_name}")
            fill_options = replace(options, file_extension=entry.file_extension)
            content = self.engine.fill(entry.content, row_groups, fill_options)

            selected, _ = select_groups(row_groups, fill_options.group_order)
            prefix = self.file_prefix if self.file_prefix is not None else category
            file_name = output_file_name(prefix, [group.key for group in selected], entry.file_extension)
            progress(90, f"Generated {file_name}")

            document = GeneratedDocument(
                content=content,
                file_name=file_name,
                file_extension=entry.file_extension,
                content_type=content_type_for(entry.file_extension),
                rows_written=sum(len(group) for group in selected),
                template_from_cache=entry.from_cache,
            )
        except Exception as exc:
            self.logger.error("pipeline.failed task=%s category=%s key=%s error=%s", task_id, category, key, exc)
            self.sink.error(task_id, str(exc))
            raise

        progress(100, "Completed")
        self.sink.result(
            task_id,
            {"fileName": document.file_name, "size": document.size, "rows": document.rows_written},
        )
        return document

    async def generate_async(
        self,
        category: str,
        key: str,
        row_groups: Sequence[RowGroup],
        options: FillOptions | None = None,
        *,
        task_id: str | None = None,
        timeout: float | None = None,
    ) -> GeneratedDocument:
        """Run :meth:`generate` in a worker thread so the event loop stays free."""

        return await asyncio.to_thread(
            self.generate,
            category,
            key,
            row_groups,
            options,
            task_id=task_id,
            timeout=timeout,
        )

    def publish(
        self,
        document: GeneratedDocument,
        *,
        category: str,
        kind: str | None = None,
        subcategory: str | None = None,
        quality_hint: str | None = None,
        timeout: float | None = None,
        progress_cb: ProgressCallback | None = None,
    ) -> ObjectInfo:
        """Upload a generated document back to the object store."""

        if self.uploader is None:
            raise ConfigError("No uploader configured for publishing documents")
        info = self.uploader.publish_document(
            kind or self.default_kind,
            category,
            document.file_name,
            document.content,
            subcategory=subcategory,
            content_type=document.content_type,
            quality_hint=quality_hint,
            timeout=timeout,
            progress_cb=progress_cb,
        )
        self.logger.info("pipeline.published key=%s size=%d", info.key, info.size)
        return info


__all__ = ["GeneratedDocument", "GenerationOrchestrator"]
