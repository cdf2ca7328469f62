import functools
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from jobboard.errors import DataServiceError

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def data_errors(fn: F) -> F:
    """Re-raise driver errors from a repository coroutine as DataServiceError."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await fn(*args, **kwargs)
        except PyMongoError as exc:
            raise DataServiceError(f"{fn.__qualname__} failed: {exc}") from exc

    return wrapper  # type: ignore[return-value]


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as exc:
        raise DataServiceError(f"invalid id {value!r}") from exc


def normalize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is not None:
        doc["_id"] = str(doc.get("_id"))
    return doc
