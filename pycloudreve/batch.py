"""Batch upload, download, copy, move and delete."""

from __future__ import annotations

import glob
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .api import CloudreveAPI
from .concurrency import TaskOutcome, TransferTask, execute_with_concurrency
from .exceptions import CloudreveDownloadError, CloudreveError, UploadPreconditionError
from .expander import ExpansionResult, RemoteExpander
from .file_entries_manager import RemoteEntriesManager
from .uploader import ChunkedUploader, build_upload_path
from .utils import DEFAULT_WORKERS, is_glob_pattern, join_remote_path, remote_basename

logger = logging.getLogger(__name__)

LocalPath = Union[str, Path]


@dataclass
class BatchReport:
    """Per-item outcome of a batch operation."""

    operation: str
    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, BaseException]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    total_bytes: int = 0

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "succeeded": self.succeeded,
            "failed": [{"item": name, "error": str(e)} for name, e in self.failed],
            "skipped": self.skipped,
            "total_bytes": self.total_bytes,
        }


def expand_local_patterns(paths: list[LocalPath]) -> list[str]:
    """Expand local wildcard arguments into matching files.

    Plain paths pass through untouched; the result is sorted and deduplicated.
    """
    result: set[str] = set()
    for path in paths:
        text = str(path)
        if is_glob_pattern(text):
            result.update(p for p in glob.glob(text) if Path(p).is_file())
        else:
            result.add(text)
    return sorted(result)


def scan_local_directory(root: Path) -> list[tuple[Path, str]]:
    """List every file below ``root``.

    Uses an explicit worklist of pending directories instead of recursion.

    Returns:
        (file path, relative directory) tuples; the relative directory uses
        forward slashes and is "" for files directly in ``root``
    """
    files: list[tuple[Path, str]] = []
    pending = [root]

    while pending:
        directory = pending.pop()
        try:
            children = sorted(directory.iterdir())
        except PermissionError as e:
            logger.warning("Permission denied: %s", e)
            continue
        for item in children:
            if item.is_file():
                relative_dir = item.parent.relative_to(root).as_posix()
                if relative_dir == ".":
                    relative_dir = ""
                files.append((item, relative_dir))
            elif item.is_dir():
                pending.append(item)

    return files


class BatchOrchestrator:
    """Expands arguments into tasks and runs them with bounded concurrency."""

    def __init__(
        self,
        api: CloudreveAPI,
        workers: int = DEFAULT_WORKERS,
        entries_manager: Optional[RemoteEntriesManager] = None,
        on_item_complete: Optional[Callable[[TaskOutcome[Any]], None]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            api: Cloudreve API client with a valid session
            workers: Maximum concurrent operations (0 = unbounded)
            entries_manager: Directory lister (created from ``api`` if omitted)
            on_item_complete: Optional callback invoked as each item finishes
        """
        self.api = api
        self.workers = workers
        self.entries_manager = entries_manager or RemoteEntriesManager(api)
        self.expander = RemoteExpander(self.entries_manager)
        self.on_item_complete = on_item_complete

    def _run(
        self,
        report: BatchReport,
        tasks: list[TransferTask[Any]],
    ) -> BatchReport:
        logger.info("Starting batch %s of %d item(s)", report.operation, len(tasks))
        outcomes = execute_with_concurrency(tasks, self.workers, self.on_item_complete)

        for outcome in outcomes:
            if outcome.ok:
                report.succeeded.append(outcome.name)
                if isinstance(outcome.value, int):
                    report.total_bytes += outcome.value
                logger.info("%s: %s", report.operation.capitalize(), outcome.name)
            elif outcome.error is not None:
                report.failed.append((outcome.name, outcome.error))
                logger.error("Failed to %s %s: %s", report.operation, outcome.name, outcome.error)

        logger.info(
            "%s complete: %d succeeded, %d failed",
            report.operation.capitalize(),
            report.succeeded_count,
            report.failed_count,
        )
        return report

    def _record_expansion_errors(self, report: BatchReport, result: ExpansionResult) -> None:
        for pattern, error in result.errors:
            report.failed.append((pattern, error))

    # =========================
    # Upload
    # =========================

    def upload(
        self,
        paths: list[LocalPath],
        dest_dir: str = "/",
        overwrite: bool = False,
        policy_id: Optional[str] = None,
        recursive: bool = False,
    ) -> BatchReport:
        """Upload local files (and directories with ``recursive``).

        Files found inside a directory keep their relative location under
        ``dest_dir``.
        """
        report = BatchReport(operation="upload")
        # (resolved local file, remote target) -> (file, target dir)
        planned: dict[tuple[Path, str], tuple[Path, str]] = {}

        def plan(file_path: Path, target_dir: str) -> None:
            key = (file_path.resolve(), build_upload_path(target_dir, file_path.name))
            if key in planned:
                logger.debug("Skipping duplicate upload of %s", file_path)
                return
            planned[key] = (file_path, target_dir)

        for path_str in expand_local_patterns(paths):
            path = Path(path_str)
            if path.is_file():
                plan(path, dest_dir)
            elif path.is_dir():
                if not recursive:
                    logger.warning("Skipping directory %s (use --recursive)", path)
                    report.skipped.append(path_str)
                    continue
                for file_path, relative_dir in scan_local_directory(path):
                    plan(file_path, join_remote_path(dest_dir, relative_dir))
            else:
                report.failed.append(
                    (path_str, UploadPreconditionError(f"File '{path_str}' does not exist"))
                )

        tasks: list[TransferTask[Any]] = [
            self._upload_task(file_path, target_dir, overwrite, policy_id)
            for file_path, target_dir in planned.values()
        ]
        return self._run(report, tasks)

    def _upload_task(
        self,
        file_path: Path,
        target_dir: str,
        overwrite: bool,
        policy_id: Optional[str],
    ) -> TransferTask[int]:
        def operation() -> int:
            uploader = ChunkedUploader(self.api, overwrite=overwrite)
            result = uploader.upload_file(file_path, target_dir, policy_id)
            return result.bytes_uploaded

        return TransferTask(name=str(file_path), operation=operation)

    # =========================
    # Download
    # =========================

    def download(
        self,
        patterns: list[str],
        output_dir: LocalPath = ".",
        recursive: bool = False,
    ) -> BatchReport:
        """Download remote files into ``output_dir``.

        With ``recursive``, wildcard matches that are folders are walked and
        their files are written below a local folder of the same name.
        """
        report = BatchReport(operation="download")
        output_root = Path(output_dir)
        expansion = self.expander.expand(patterns, include_folders=recursive)
        self._record_expansion_errors(report, expansion)

        tasks: list[TransferTask[Any]] = []
        local_names: dict[Path, str] = {}
        for remote_path in expansion.paths:
            if remote_path in expansion.folders:
                folder_root = output_root / remote_basename(remote_path)
                prefix = remote_path.rstrip("/") + "/"
                try:
                    walked = list(self.entries_manager.iter_walk(remote_path))
                except CloudreveError as e:
                    logger.error("Failed to list %s: %s", remote_path, e)
                    report.failed.append((remote_path, e))
                    continue
                for _, file_path in walked:
                    relative = file_path[len(prefix) :]
                    local_dir = (folder_root / relative).parent
                    tasks.append(self._download_task(file_path, local_dir))
            else:
                target = output_root / remote_basename(remote_path)
                if target in local_names:
                    # Same name from another directory would overwrite the first file
                    error = CloudreveDownloadError(
                        f"{target} is already the target of {local_names[target]}"
                    )
                    logger.warning("Skipping %s: %s", remote_path, error)
                    report.failed.append((remote_path, error))
                    continue
                local_names[target] = remote_path
                tasks.append(self._download_task(remote_path, output_root))

        return self._run(report, tasks)

    def _download_task(self, remote_path: str, local_dir: Path) -> TransferTask[int]:
        def operation() -> int:
            download = self.api.create_download_url(remote_path)
            filename = download.display_name or remote_basename(remote_path)
            local_dir.mkdir(parents=True, exist_ok=True)
            output_path = local_dir / filename
            logger.info("Saving %s to %s", remote_path, output_path)
            return self.api.download_to(download.url, output_path)

        return TransferTask(name=remote_path, operation=operation)

    # =========================
    # Copy / move / delete
    # =========================

    def copy(self, patterns: list[str], destination: str) -> BatchReport:
        """Copy matching remote files into ``destination``."""
        return self._relocate("copy", patterns, destination, self.api.copy)

    def move(self, patterns: list[str], destination: str) -> BatchReport:
        """Move matching remote files into ``destination``."""
        return self._relocate("move", patterns, destination, self.api.move)

    def _relocate(
        self,
        operation_name: str,
        patterns: list[str],
        destination: str,
        call: Callable[[str, str], Any],
    ) -> BatchReport:
        report = BatchReport(operation=operation_name)
        expansion = self.expander.expand(patterns, include_folders=False)
        self._record_expansion_errors(report, expansion)
        logger.info("Expanded to %d file(s)", len(expansion.paths))

        tasks: list[TransferTask[Any]] = [
            TransferTask(name=path, operation=lambda p=path: call(p, destination))
            for path in expansion.paths
        ]
        return self._run(report, tasks)

    def delete(self, patterns: list[str]) -> BatchReport:
        """Delete remote paths.

        A trailing ``/*`` clears a folder, including its sub-folders; other
        wildcards only match files.
        """
        report = BatchReport(operation="delete")
        expansion = self.resolve_delete_targets(patterns)
        self._record_expansion_errors(report, expansion)
        tasks: list[TransferTask[Any]] = [
            TransferTask(name=path, operation=lambda p=path: self.api.delete(p))
            for path in expansion.paths
        ]
        return self._run(report, tasks)

    def resolve_delete_targets(self, patterns: list[str]) -> ExpansionResult:
        """Paths :meth:`delete` would remove, plus any pattern errors."""
        clear_patterns = [p for p in patterns if p.endswith("/*")]
        other_patterns = [p for p in patterns if not p.endswith("/*")]

        paths: set[str] = set()
        result = ExpansionResult()
        for group, include_folders in ((clear_patterns, True), (other_patterns, False)):
            if not group:
                continue
            expansion = self.expander.expand(group, include_folders=include_folders)
            result.errors.extend(expansion.errors)
            result.folders.update(expansion.folders)
            paths.update(expansion.paths)
        result.paths = sorted(paths)
        return result
