"""Deferred symlink queue.

Accumulates symlink requests discovered while walking a source tree and
flushes them later, either for real or as a dry run. Flushing is
best-effort: a failing request never stops the remaining ones, and the
queue is always cleared afterwards.
"""

import logging
import os
import threading
from dataclasses import dataclass

from pkginstall.core.errors import (
    DuplicateSymlinkTargetError,
    PolicyViolationError,
    SymlinkError,
    SymlinkFlushError,
    SymlinkPolicyError,
)
from pkginstall.security.pathmap import PathMapper
from pkginstall.security.validator import PathValidator
from pkginstall.symlinks.manager import SymlinkManager

logger = logging.getLogger(__name__)

AUTO_DESCRIPTION = "Automatically detected during build"


@dataclass(frozen=True, slots=True)
class SymlinkRequest:
    """A request to link ``target`` to ``source``.

    Attributes:
        source: Secure path the symlink points to.
        target: Conventional system location of the symlink.
        description: What the symlink is for.
    """

    source: str
    target: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class SymlinkResult:
    """Result of flushing a single symlink request.

    Attributes:
        request: The request that was processed.
        success: Whether the symlink was created (or would be, in dry-run).
        error: Error message if creation failed, None otherwise.
        dry_run: Whether this was a dry-run (nothing created).
    """

    request: SymlinkRequest
    success: bool
    error: str | None = None
    dry_run: bool = False


class SymlinkProcessor:
    """Queues symlink requests and creates them in a single flush.

    Enqueue and read operations are guarded by a lock so callers may
    parallelize the walk; the flush itself is single-threaded.
    """

    def __init__(
        self,
        path_mapper: PathMapper,
        manager: SymlinkManager,
        validator: PathValidator,
        dry_run: bool = False,
    ) -> None:
        """Initialize the processor.

        Args:
            path_mapper: Mapper deciding whether a path needs a symlink.
            manager: Low-level symlink creator.
            validator: Validator for source/target paths and pairs.
            dry_run: If True, flush only logs what would be created.
        """
        self._path_mapper = path_mapper
        self._manager = manager
        self._validator = validator
        self._dry_run = dry_run
        self._queue: list[SymlinkRequest] = []
        self._lock = threading.Lock()

    @property
    def dry_run(self) -> bool:
        """Check if the processor is in dry-run mode."""
        return self._dry_run

    def queue(self, request: SymlinkRequest) -> None:
        """Validate a request and append it to the queue.

        Args:
            request: Symlink to create later.

        Raises:
            SymlinkPolicyError: If either path or the pair is invalid.
            DuplicateSymlinkTargetError: If the target is already queued.
        """
        for label, path in (("source", request.source), ("target", request.target)):
            try:
                self._validator.validate_path(path)
            except PolicyViolationError as e:
                msg = f"Invalid {label} path {path}: {e}"
                raise SymlinkPolicyError(msg, path) from e

        self._validator.validate_symlink(request.source, request.target)

        with self._lock:
            if any(existing.target == request.target for existing in self._queue):
                raise DuplicateSymlinkTargetError(request.target)
            self._queue.append(request)

        logger.debug("Queued symlink: %s -> %s (%s)", request.source, request.target, request.description)

    def process_path(self, original: str, transformed: str = "") -> bool:
        """Queue a symlink for ``original`` if the mapper requires one.

        Args:
            original: Original system path (becomes the symlink target).
            transformed: Already computed secure path, or empty to compute it.

        Returns:
            True if a symlink was queued, False if none was needed.

        Raises:
            TransformationError: If ``original`` cannot be transformed.
            SymlinkPolicyError: If the request fails validation.
            DuplicateSymlinkTargetError: If the target is already queued.
        """
        computed, needs_symlink = self._path_mapper.transform(original)
        if not needs_symlink:
            return False

        self.queue(
            SymlinkRequest(
                source=transformed or computed,
                target=original,
                description=AUTO_DESCRIPTION,
            )
        )
        return True

    def flush(self) -> list[SymlinkResult]:
        """Create every queued symlink in a single best-effort pass.

        The queue is cleared unconditionally at the end of the pass.

        Returns:
            One SymlinkResult per queued request.

        Raises:
            SymlinkFlushError: If at least one request failed.
        """
        with self._lock:
            pending = list(self._queue)
            self._queue.clear()

        if not pending:
            logger.debug("No symlinks to process")
            return []

        logger.info("Processing %d queued symlink(s)", len(pending))

        results = [self._create(request) for request in pending]
        failures = [f"{r.request.target}: {r.error}" for r in results if not r.success]
        if failures:
            raise SymlinkFlushError(failures, results)
        return results

    def snapshot(self) -> list[SymlinkRequest]:
        """Return an independent copy of the queued requests."""
        with self._lock:
            return list(self._queue)

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def _create(self, request: SymlinkRequest) -> SymlinkResult:
        if self._dry_run:
            logger.info("Dry-run: would create symlink %s -> %s", request.target, request.source)
            return SymlinkResult(request=request, success=True, dry_run=True)

        parent = os.path.dirname(request.target)
        try:
            os.makedirs(parent, mode=0o755, exist_ok=True)
            self._manager.create_symlink(request.source, request.target)
        except (OSError, SymlinkError) as e:
            logger.warning("Error creating symlink %s -> %s: %s", request.target, request.source, e)
            return SymlinkResult(request=request, success=False, error=str(e))

        return SymlinkResult(request=request, success=True)
