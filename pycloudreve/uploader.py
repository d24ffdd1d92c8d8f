"""Resumable chunked upload of a single file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .api import CloudreveAPI
from .exceptions import ChunkUploadFailedError, CloudreveError, UploadPreconditionError
from .models import UploadSession
from .retry import CHUNK_RETRY_POLICY, RetryPolicy, retry_call
from .utils import join_remote_path, remote_parent

logger = logging.getLogger(__name__)


class UploadState(Enum):
    """Lifecycle of one upload."""

    CREATED = "created"
    SESSION_OPEN = "session_open"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class UploadResult:
    """Outcome of a completed upload."""

    session: UploadSession
    bytes_uploaded: int = 0
    chunk_attempts: list[int] = field(default_factory=list)
    """Number of attempts each chunk needed, by chunk index"""

    @property
    def chunks_uploaded(self) -> int:
        return len(self.chunk_attempts)


def build_upload_path(directory: str, file_name: str) -> str:
    """Remote path of ``file_name`` uploaded into ``directory``."""
    return join_remote_path(directory or "/", file_name)


class ChunkedUploader:
    """Drives one upload session from creation to the last chunk.

    An instance handles a single file: ``open`` creates the session,
    ``upload`` sends the chunks in index order. A chunk that still fails
    after the retry budget aborts the upload and the session is deleted.
    """

    def __init__(
        self,
        api: CloudreveAPI,
        retry_policy: RetryPolicy = CHUNK_RETRY_POLICY,
        overwrite: bool = False,
    ):
        self.api = api
        self.retry_policy = retry_policy
        self.overwrite = overwrite
        self.state = UploadState.CREATED
        self.local_path: Optional[Path] = None
        self.session: Optional[UploadSession] = None

    def resolve_storage_policy(
        self, target_path: str, policy_id: Optional[str] = None
    ) -> str:
        """Pick the storage policy for an upload.

        Priority: the target directory's own policy, then ``policy_id``,
        then the first policy available to the account.

        Raises:
            UploadPreconditionError: If no policy can be determined
        """
        directory = remote_parent(target_path)
        logger.info("Checking storage policy for directory: %s", directory)
        try:
            page = self.api.list_directory(directory, page_size=1)
            if page.storage_policy and page.storage_policy.id:
                logger.info(
                    "Using directory storage policy: %s (%s)",
                    page.storage_policy.name,
                    page.storage_policy.id,
                )
                return page.storage_policy.id
            logger.info("Directory has no preferred storage policy")
        except CloudreveError as e:
            logger.warning("Could not fetch directory storage policy: %s", e)

        if policy_id:
            logger.info("Using user-specified storage policy: %s", policy_id)
            return policy_id

        logger.info("Fetching available storage policies...")
        try:
            policies = self.api.get_storage_policies()
        except CloudreveError as e:
            raise UploadPreconditionError(
                f"Could not fetch storage policies: {e}"
            ) from e
        if not policies:
            raise UploadPreconditionError(
                "No storage policies available. Use --policy to specify one."
            )
        first = policies[0]
        logger.info("Using first available storage policy: %s (%s)", first.name, first.id)
        return first.id

    def open(
        self,
        local_path: Path,
        target_path: str,
        policy_id: Optional[str] = None,
    ) -> UploadSession:
        """Validate the local file and create the remote upload session.

        Args:
            local_path: File to upload
            target_path: Full remote path of the uploaded file
            policy_id: Storage policy to use when the directory has none

        Raises:
            UploadPreconditionError: Missing/unreadable file or no policy
        """
        local_path = Path(local_path)
        if not local_path.exists():
            raise UploadPreconditionError(f"File '{local_path}' does not exist")
        if not local_path.is_file():
            raise UploadPreconditionError(f"'{local_path}' is not a regular file")
        if not os.access(local_path, os.R_OK):
            raise UploadPreconditionError(f"File '{local_path}' is not readable")

        file_size = local_path.stat().st_size
        logger.info("Uploading %s (%d bytes) to %s", local_path, file_size, target_path)

        resolved_policy = self.resolve_storage_policy(target_path, policy_id)
        session = self.api.create_upload_session(
            target_path, file_size, resolved_policy, overwrite=self.overwrite
        )
        logger.info(
            "Upload session created: %s (chunk size %d, %d chunk(s))",
            session.session_id,
            session.chunk_size,
            session.chunks_total,
        )
        self.local_path = local_path
        self.session = session
        self.state = UploadState.SESSION_OPEN
        return session

    def _abort(self, session: UploadSession) -> None:
        """Delete the upload session; failures are only logged."""
        self.state = UploadState.ABORTED
        try:
            self.api.delete_upload_session(session.target_path, session.session_id)
            logger.info("Upload session %s deleted", session.session_id)
        except CloudreveError as e:
            logger.warning(
                "Failed to delete upload session %s: %s", session.session_id, e
            )

    def upload(
        self,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> UploadResult:
        """Send every chunk of the opened session.

        Args:
            progress_callback: Optional callback function(bytes_uploaded, total_bytes)

        Returns:
            UploadResult with per-chunk attempt counts

        Raises:
            ChunkUploadFailedError: A chunk failed after all retries
        """
        if self.session is None or self.local_path is None:
            raise RuntimeError("Upload session is not open")

        session = self.session
        chunk_size = session.effective_chunk_size
        result = UploadResult(session=session)
        self.state = UploadState.UPLOADING

        try:
            f = open(self.local_path, "rb")
        except OSError as e:
            self._abort(session)
            raise UploadPreconditionError(
                f"Cannot read '{self.local_path}': {e}"
            ) from e

        with f:
            for index in range(session.chunks_total):
                chunk = f.read(chunk_size)
                logger.debug(
                    "Uploading chunk %d/%d (%d bytes)",
                    index + 1,
                    session.chunks_total,
                    len(chunk),
                )
                attempts = self._upload_chunk(session, index, chunk)
                result.chunk_attempts.append(attempts)
                result.bytes_uploaded += len(chunk)
                if progress_callback:
                    progress_callback(result.bytes_uploaded, session.total_size)

        self.state = UploadState.COMPLETED
        logger.info("%d chunk(s) uploaded for %s", session.chunks_total, session.target_path)
        return result

    def _upload_chunk(self, session: UploadSession, index: int, chunk: bytes) -> int:
        """Upload one chunk under the retry policy and return the attempt count."""
        attempts = 0

        def send() -> None:
            nonlocal attempts
            attempts += 1
            self.api.upload_chunk(session.session_id, index, chunk)

        def on_retry(attempt: int, error: BaseException) -> None:
            logger.warning("Retry %d uploading chunk %d: %s", attempt, index + 1, error)

        try:
            retry_call(
                send,
                self.retry_policy,
                retry_on=(CloudreveError,),
                on_retry=on_retry,
            )
        except CloudreveError as e:
            logger.error(
                "Failed to upload chunk %d after %d attempts: %s",
                index + 1,
                attempts,
                e,
            )
            self._abort(session)
            raise ChunkUploadFailedError(index, e) from e
        return attempts

    def upload_file(
        self,
        local_path: Path,
        remote_dir: str,
        policy_id: Optional[str] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> UploadResult:
        """Upload ``local_path`` into ``remote_dir`` under its own name."""
        target_path = build_upload_path(remote_dir, Path(local_path).name)
        self.open(local_path, target_path, policy_id)
        return self.upload(progress_callback)
