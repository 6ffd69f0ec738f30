from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.exceptions import AppError, DatabaseError
from curation.database.guards import ACTING_USER_KEY
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)

TRANSACTION_DEPTH_KEY = "curation_transaction_depth"


class BaseService:
    """Base class for application services.

    Services sharing one session share its unit of work: ``transaction()``
    blocks nest, and only the outermost one commits or rolls back.
    """

    def __init__(self, session: AsyncSession):
        """Initialize the service.

        Args:
            session: Async session owned by the caller
        """
        self.session = session
        self.logger = LOGGER

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Run a block as one atomic unit.

        On success the outermost block commits. On failure it rolls back
        and re-raises: ``AppError``s pass through unchanged, database errors
        become ``DatabaseError`` and anything else becomes ``AppError``.
        Blocked writes on approved content are logged by the ORM guards
        themselves, whichever way the block ends.

        Yields:
            AsyncSession: The service session
        """
        depth = self.session.info.get(TRANSACTION_DEPTH_KEY, 0)
        self.session.info[TRANSACTION_DEPTH_KEY] = depth + 1
        outermost = depth == 0

        try:
            yield self.session
            if outermost:
                await self.session.commit()

        except AppError:
            if outermost:
                await self.session.rollback()
            raise

        except SQLAlchemyError as e:
            if not outermost:
                raise
            await self.session.rollback()
            self.logger.error(
                f"Database operation failed: {str(e)}",
                exc_info=True,
                extra={"service": self.__class__.__name__}
            )
            raise DatabaseError(f"Database operation failed: {str(e)}", original_error=e) from e

        except Exception as e:
            if not outermost:
                raise
            await self.session.rollback()
            self.logger.error(
                f"Service execution failed: {str(e)}",
                exc_info=True,
                extra={"service": self.__class__.__name__}
            )
            raise AppError(f"Service execution failed: {str(e)}", original_error=e) from e

        finally:
            self.session.info[TRANSACTION_DEPTH_KEY] = depth
            if outermost:
                self.session.info.pop(ACTING_USER_KEY, None)

