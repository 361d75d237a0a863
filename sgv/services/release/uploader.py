"""Send local build archives to the remote version.

One upload is a three-leg protocol: ask the API for a presigned URL
(``start-build-upload``), PUT the archive bytes to storage, then confirm
(``confirm-build-upload``). The outcome is recorded on the build entry rather
than raised, so a batch of uploads always yields one entry per build.
Cancellation is the exception: it propagates as :class:`UploadCancelled`.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

from sgv.core.result import Err
from sgv.services.release.api import BuildUploadApi
from sgv.services.release.model import VersionBuildEntry
from sgv.services.release.storage import PresignedUploader, content_type_for
from sgv.services.release.timeouts import HASH_CHUNK_BYTES
from sgv.tools.http import TransferCancelled

UploadCancelled = TransferCancelled

ProgressCallback = Callable[[int, int], None]


def sha256_file(
    path: Path,
    *,
    progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
) -> str:
    """Lowercase hex SHA-256 of ``path``, streamed in 256 KiB chunks.

    Raises:
        OSError: if the file cannot be read.
        UploadCancelled: if ``cancel`` is set while hashing.
    """
    total = path.stat().st_size
    digest = hashlib.sha256()
    done = 0
    with path.open("rb") as handle:
        while chunk := handle.read(HASH_CHUNK_BYTES):
            if cancel is not None and cancel.is_set():
                raise UploadCancelled("upload cancelled")
            digest.update(chunk)
            done += len(chunk)
            if progress is not None:
                progress(done, total)
    return digest.hexdigest()


@dataclass
class BuildUploader:
    uploads: BuildUploadApi
    storage: PresignedUploader

    def upload(
        self,
        entry: VersionBuildEntry,
        remote_semver: str | None,
        *,
        cancel: threading.Event | None = None,
        hash_progress: ProgressCallback | None = None,
        upload_progress: ProgressCallback | None = None,
    ) -> VersionBuildEntry:
        """Upload one build and return the updated entry.

        Raises:
            UploadCancelled: if ``cancel`` is set at any point.
        """
        if not remote_semver:
            return entry.mark_upload_failed(
                "No remote version started; start the version before uploading builds"
            )

        build = entry.build
        archive = build.artifact_path
        if not build.success or archive is None or not archive.is_file():
            return entry.mark_upload_failed(f"Build archive not found: {archive or '<none>'}")
        compression = build.compression
        assert compression is not None

        _check_cancel(cancel)
        ticket = self.uploads.start(
            semver=remote_semver,
            platform=build.platform,
            executable_name=build.executable_name or "",
            filename=archive.name,
            download_size=compression.size_compressed,
            installed_size=compression.size_uncompressed,
        )
        if isinstance(ticket, Err):
            return entry.mark_upload_failed(f"Start upload failed: {ticket.error.message}")

        try:
            checksum = sha256_file(archive, progress=hash_progress, cancel=cancel)
        except OSError as e:
            return entry.mark_upload_failed(f"Cannot read build archive: {e}")

        signed = ticket.value.signed_url
        put = self.storage.upload(
            signed.url,
            archive,
            content_type=signed.content_type or content_type_for(archive),
            progress=upload_progress,
            cancel=cancel,
        )
        if isinstance(put, Err):
            return entry.mark_upload_failed(f"Upload to storage failed: {put.error}", checksum=checksum)

        _check_cancel(cancel)
        confirmed = self.uploads.confirm(
            upload_token=ticket.value.upload_token,
            semver=remote_semver,
            platform=build.platform,
        )
        if isinstance(confirmed, Err):
            return entry.mark_upload_failed(
                f"Confirm upload failed: {confirmed.error.message}", checksum=checksum
            )

        return entry.mark_uploaded(None, checksum)


def upload_all(
    uploader: BuildUploader,
    entries: Sequence[VersionBuildEntry],
    remote_semver: str | None,
    *,
    max_workers: int = 4,
    cancel: threading.Event | None = None,
    on_done: Callable[[int, VersionBuildEntry], None] | None = None,
    progress_factory: Callable[[VersionBuildEntry], ProgressCallback | None] | None = None,
) -> list[VersionBuildEntry]:
    """Upload every not-yet-uploaded entry concurrently.

    Returns the entries in input order. Already uploaded entries are returned
    unchanged. If any worker is cancelled the remaining ones are signalled
    through ``cancel`` and :class:`UploadCancelled` is raised once all have
    stopped.
    """
    results = list(entries)
    pending = [i for i, e in enumerate(entries) if not e.uploaded]
    if not pending:
        return results

    stop = cancel or threading.Event()
    cancelled = False
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(pending)))) as pool:
        futures: dict[Future[VersionBuildEntry], int] = {}
        for index in pending:
            entry = entries[index]
            progress = progress_factory(entry) if progress_factory else None
            future = pool.submit(
                uploader.upload, entry, remote_semver, cancel=stop, upload_progress=progress
            )
            futures[future] = index

        try:
            for future in as_completed(futures):
                index = futures[future]
                try:
                    updated = future.result()
                except UploadCancelled:
                    cancelled = True
                    stop.set()
                    continue
                results[index] = updated
                if on_done is not None:
                    on_done(index, updated)
        except BaseException:
            # Workers poll ``stop`` between chunks; the pool joins them on exit.
            stop.set()
            raise

    if cancelled:
        raise UploadCancelled("upload cancelled")
    return results


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise UploadCancelled("upload cancelled")
