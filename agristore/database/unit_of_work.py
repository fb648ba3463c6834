"""
Transaction boundary for multi-step writes.

The order workflow hands a list of async operations to ``run_atomically``;
they share one session and either all commit or all roll back.
"""

from typing import Any, Awaitable, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agristore.core.logging import get_logger, log_performance

logger = get_logger(__name__)

Operation = Callable[[AsyncSession], Awaitable[Any]]


class TransactionError(Exception):
    """Raised when the storage layer fails while committing a unit of work."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class UnitOfWork:
    """All-or-nothing execution of a sequence of session operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def run_atomically(
        self,
        operations: Sequence[Operation],
        name: str = "unit_of_work",
    ) -> list[Any]:
        """
        Run operations in order and commit them as one transaction.

        Args:
            operations: Async callables receiving the shared session
            name: Operation name used in logs

        Returns:
            Results of each operation, in order

        Raises:
            TransactionError: If the database rejects any write or the commit
            Exception: Any business error raised by an operation, after rollback
        """
        results: list[Any] = []
        try:
            with log_performance(logger, name, steps=len(operations)):
                for operation in operations:
                    results.append(await operation(self.session))
                await self.session.flush()
                await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Transaction rolled back on database error",
                operation=name,
                error=str(e),
            )
            raise TransactionError(
                f"Failed to persist {name}: {e.__class__.__name__}",
                operation=name,
            ) from e
        except Exception as e:
            await self.session.rollback()
            logger.info(
                "Transaction rolled back",
                operation=name,
                error_type=type(e).__name__,
            )
            raise

        return results
