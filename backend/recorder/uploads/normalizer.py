"""Uniform upload responses and post-save notification."""
import logging
from concurrent.futures import Executor
from typing import Callable, Optional, Sequence

from .errors import UploadError
from .schemas import StorageResult, UploadContext, UploadOutcome

logger = logging.getLogger(__name__)

SavedListener = Callable[[StorageResult, UploadContext], None]


def log_saved_recording(result: StorageResult, context: UploadContext) -> None:
    """Default listener: record where a recording was saved."""
    logger.info(
        "Recording saved: provider=%s id=%s url=%s consumer=%s reference_id=%s",
        result.provider,
        result.backend_id,
        result.locator,
        context.consumer or "-",
        context.reference_id or "-",
    )


class ResultNormalizer:
    """Builds UploadOutcomes and fires post-save listeners.

    Listeners are fire-and-forget. With an ``executor`` they run in the
    background; without one they run inline. Either way a failing listener
    is logged and never changes the outcome. Listeners receive deep copies
    of the result and context, so mutating them cannot alter the response.

    Args:
        listeners: Callables invoked with ``(result, context)`` after a save.
        executor: Optional executor used to run listeners off the request path.
    """

    def __init__(
        self,
        listeners: Sequence[SavedListener] = (),
        executor: Optional[Executor] = None,
    ) -> None:
        self._listeners = list(listeners)
        self._executor = executor

    @property
    def listeners(self) -> tuple:
        return tuple(self._listeners)

    def success(self, result: StorageResult, context: UploadContext) -> UploadOutcome:
        outcome = UploadOutcome.succeeded(result)
        self._notify(result, context)
        return outcome

    def failure(self, error: UploadError) -> UploadOutcome:
        return UploadOutcome.failed(error.message, error.status_code)

    def _notify(self, result: StorageResult, context: UploadContext) -> None:
        for listener in self._listeners:
            # Each listener gets its own copy; the outcome keeps the original
            args = (listener, result.model_copy(deep=True), context.model_copy(deep=True))
            if self._executor is None:
                self._run_listener(*args)
                continue
            try:
                self._executor.submit(self._run_listener, *args)
            except RuntimeError as e:
                # Executor already shut down
                logger.warning(f"Could not schedule post-save listener {listener!r}: {e}")

    @staticmethod
    def _run_listener(listener: SavedListener, result: StorageResult, context: UploadContext) -> None:
        try:
            listener(result, context)
        except Exception:
            logger.exception("Post-save listener %r failed", listener)
