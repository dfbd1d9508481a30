"""Storage routing: external handlers first, default backend otherwise.

Handlers are plain callables registered in order when the router is built::

    def handler(path: Path, context: UploadContext, meta: FileMeta):
        return None                                  # not handled
        return {"provider": "cdn", "url": "https://..."}  # handled

The first handler that returns a result claims the upload and the remaining
handlers are not consulted. A handler that raises fails the whole upload;
there is no fallthrough to the next handler or to the default backend.
"""
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

from .errors import ExternalHandlerError
from .schemas import FileMeta, StorageResult, UploadContext
from .staging import StagedFile

logger = logging.getLogger(__name__)

HandlerResult = Optional[Union[StorageResult, Mapping]]
StorageHandler = Callable[[Path, UploadContext, FileMeta], HandlerResult]


class StorageBackend(ABC):
    """Abstract default storage backend.

    The pipeline calls :meth:`store` only when no external handler claimed
    the upload.
    """

    @abstractmethod
    def store(
        self,
        staged: StagedFile,
        title: str,
        *,
        mime_type: str = "",
        uploaded_by: str = "",
    ) -> StorageResult:
        """Persist the staged file and describe where it went.

        Raises:
            BackendError: On any failure of the underlying store.
        """


@dataclass(frozen=True)
class ExternalHandled:
    """An external handler claimed and stored the file."""
    result: StorageResult
    handler: str = ""


@dataclass(frozen=True)
class UseDefault:
    """No handler claimed the file; the default backend must store it."""


RouteOutcome = Union[ExternalHandled, UseDefault]

USE_DEFAULT = UseDefault()


def _handler_name(handler: Any) -> str:
    name = getattr(handler, "__qualname__", None) or type(handler).__qualname__
    module = getattr(handler, "__module__", None)
    return f"{module}.{name}" if module else name


def _coerce_result(claimed: Any, handler: str) -> StorageResult:
    if isinstance(claimed, StorageResult):
        return claimed
    if isinstance(claimed, Mapping):
        try:
            return StorageResult.from_mapping(claimed)
        except (TypeError, ValueError) as exc:
            raise ExternalHandlerError(handler=handler) from exc
    raise ExternalHandlerError(handler=handler)


class StorageRouter:
    """Offers staged uploads to an ordered list of external handlers.

    Args:
        handlers: Handlers in priority order. An empty list routes every
            upload to the default backend.
    """

    def __init__(self, handlers: Sequence[StorageHandler] = ()) -> None:
        self._handlers = list(handlers)

    @property
    def handlers(self) -> tuple:
        return tuple(self._handlers)

    def route(self, staged: StagedFile, context: UploadContext, file_meta: FileMeta) -> RouteOutcome:
        """Find the handler that claims ``staged``.

        Raises:
            ExternalHandlerError: If a handler raises, returns something that
                is neither None nor a result, or returns a mapping that cannot
                be turned into a JSON-safe result.
        """
        for handler in self._handlers:
            name = _handler_name(handler)
            try:
                claimed = handler(staged.path, context, file_meta)
            except Exception as exc:
                logger.exception("Storage handler %s failed for %s", name, file_meta.name)
                raise ExternalHandlerError(handler=name) from exc

            if claimed is None:
                logger.debug("Storage handler %s declined %s", name, file_meta.name)
                continue

            try:
                result = _coerce_result(claimed, name)
            except ExternalHandlerError:
                logger.error(
                    "Storage handler %s returned unusable %s",
                    name,
                    type(claimed).__name__,
                    exc_info=True,
                )
                raise

            logger.info(
                "Upload %s stored externally by %s (provider=%s)",
                file_meta.name,
                name,
                result.provider,
            )
            return ExternalHandled(result=result, handler=name)

        return USE_DEFAULT
