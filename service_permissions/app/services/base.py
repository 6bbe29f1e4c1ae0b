"""
Common plumbing for services that mutate the permission store.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, TypeVar, TYPE_CHECKING

import pydantic

from shared.errors import PermissionEngineException, StoreUnavailable, ValidationError
from shared.logging import get_logger
from ..rules.models import Effect, PermissionSnapshot

if TYPE_CHECKING:
    from ..main import PermissionEngine

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


class EngineService:
    """Base class for services bound to one engine session.

    Mutations follow the same sequence: validate against the local
    snapshot, await the store, write the returned row through to the
    snapshot, then invalidate the affected principals. Nothing local
    changes until the store call has returned.
    """

    def __init__(self, engine: "PermissionEngine", logger_name: str):
        self.engine = engine
        self.logger = get_logger(logger_name)

    async def _snapshot(self) -> PermissionSnapshot:
        """Current snapshot, loading it first if the session has none."""
        await self.engine.ensure_loaded()
        return self.engine.snapshot

    async def _call_store(self, operation: str, call: Callable[..., Awaitable[Any]],
                          *args, **kwargs) -> Any:
        """Await a store call; domain errors propagate, anything else is wrapped."""
        try:
            result = await call(*args, **kwargs)
        except PermissionEngineException as e:
            self.engine.metrics.record_mutation(operation, "rejected")
            self.logger.warning("Store rejected mutation", operation=operation, code=e.code,
                                error=e.message)
            raise
        except Exception as e:
            self.engine.metrics.record_mutation(operation, "error")
            self.engine.metrics.record_error("store_unavailable")
            self.logger.error("Store call failed", operation=operation, error=str(e))
            raise StoreUnavailable(operation, str(e) or "Permission store unavailable") from e

        self.engine.metrics.record_mutation(operation, "success")
        return result

    def _reject(self, operation: str, error: PermissionEngineException) -> PermissionEngineException:
        """Record a mutation refused by local validation."""
        self.engine.metrics.record_mutation(operation, "rejected")
        self.logger.warning("Mutation rejected", operation=operation, code=error.code,
                            error=error.message)
        return error

    def _invalidate(self, operation: str, principal_ids: Iterable[str]) -> int:
        ids = set(principal_ids)
        if not ids:
            return 0
        removed = self.engine.cache.invalidate_many(ids)
        self.logger.info("Invalidated principals after mutation", operation=operation,
                         principal_ids=sorted(ids))
        return removed

    def _invalidate_all(self, operation: str) -> None:
        self.engine.cache.clear()
        self.logger.info("Invalidated every principal after mutation", operation=operation)

    def _validated_patch(self, operation: str, current: ModelT,
                         patch: Dict[str, Any]) -> ModelT:
        """Apply a patch to a copy of ``current`` and validate the result."""
        try:
            return type(current).model_validate({**current.model_dump(), **patch})
        except pydantic.ValidationError as e:
            raise self._reject(operation, ValidationError(
                "Invalid field values",
                {"fields": sorted(patch), "errors": [error["msg"] for error in e.errors()]}
            )) from e

    def _effect(self, operation: str, effect: Any) -> Effect:
        try:
            return Effect(effect)
        except ValueError as e:
            raise self._reject(operation, ValidationError(
                "Unknown effect", {"effect": str(effect)}
            )) from e
