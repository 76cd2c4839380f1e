from __future__ import annotations
import functools
import logging
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def storage_guard(func: F) -> F:
	"""Roll back and translate persistence failures that escape a service call.

	Constraint violations the service did not resolve itself become
	ConflictError; anything else from the driver becomes an opaque StorageError.
	"""

	@functools.wraps(func)
	def wrapper(db: Session, *args: Any, **kwargs: Any) -> Any:
		try:
			return func(db, *args, **kwargs)
		except IntegrityError as exc:
			db.rollback()
			logger.warning("%s: unresolved constraint violation: %s", func.__name__, exc.orig)
			raise ConflictError("the change conflicts with existing data") from exc
		except SQLAlchemyError as exc:
			db.rollback()
			logger.exception("%s: storage failure", func.__name__)
			raise StorageError("storage is unavailable, try again later") from exc

	return wrapper  # type: ignore[return-value]
