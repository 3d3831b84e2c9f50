"""
Base Repository Pattern

Purpose
-------
Type-safe, generic repository abstraction over SQLAlchemy 2.0 async
sessions. Repositories encapsulate data access and give every module the
same CRUD surface.

Design Notes
------------
- Pure data access: no business rules, no transaction management
  (``UnitOfWork`` / ``DatabaseService`` own the transaction)
- Pessimistic locking through ``get_for_update`` / ``for_update=True``;
  SQLite ignores ``FOR UPDATE`` and relies on ``BEGIN IMMEDIATE``
- Locked reads go through ``session.execute`` so pending changes are
  autoflushed before ``populate_existing`` refreshes the identity
- Every call logs at DEBUG with the model name

Usage
-----
    from sparkle.database.models.core import Account
    from sparkle.modules.shared.base_repository import BaseRepository

    class AccountRepository(BaseRepository[Account]):
        async def find_by_username(self, session, username):
            return await self.find_one_where(session, Account.username == username)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Generic base repository for type-safe database operations.

    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    @property
    def _name(self) -> str:
        return self.model_class.__name__

    async def get(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """Get a single record by primary key (no lock)."""
        instance = await session.get(self.model_class, id_value)

        self.log.debug(
            f"Repository.get: {self._name}",
            extra={"model": self._name, "id": id_value, "found": instance is not None},
        )
        return instance

    async def get_for_update(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """
        Get a single record by primary key with ``SELECT ... FOR UPDATE``.

        Args:
            session: Database session inside an open transaction
            id_value: Primary key value

        Returns:
            Model instance refreshed from the locked row, or None
        """
        stmt = (
            select(self.model_class)
            .where(self.model_class.id == id_value)  # type: ignore[attr-defined]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()

        self.log.debug(
            f"Repository.get_for_update: {self._name}",
            extra={
                "model": self._name,
                "id": id_value,
                "found": instance is not None,
                "locked": True,
            },
        )
        return instance

    async def get_many_for_update(self, session: AsyncSession, id_values: Sequence[Any]) -> List[T]:
        """
        Lock several rows in ascending primary-key order.

        A stable lock order keeps two transactions touching the same pair
        of rows from deadlocking.
        """
        pk = self.model_class.id  # type: ignore[attr-defined]
        stmt = (
            select(self.model_class)
            .where(pk.in_(list(id_values)))
            .order_by(pk)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.get_many_for_update: {self._name}",
            extra={
                "model": self._name,
                "requested_count": len(id_values),
                "found_count": len(instances),
                "locked": True,
            },
        )
        return instances

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        stmt = select(self.model_class).where(*conditions)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()

        self.log.debug(
            f"Repository.find_one_where: {self._name}",
            extra={"model": self._name, "found": instance is not None, "locked": for_update},
        )
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[Sequence[Any]] = None,
        for_update: bool = False,
        limit: Optional[int] = None,
    ) -> List[T]:
        """
        Find multiple records matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            order_by: Optional ORDER BY clauses
            for_update: If True, use SELECT FOR UPDATE
            limit: Optional maximum number of results
        """
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.find_many_where: {self._name}",
            extra={
                "model": self._name,
                "found_count": len(instances),
                "locked": for_update,
                "limit": limit,
            },
        )
        return instances

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        count = int(result.scalar_one())

        self.log.debug(
            f"Repository.count: {self._name}",
            extra={"model": self._name, "count": count},
        )
        return count

    async def sum(
        self,
        session: AsyncSession,
        column: InstrumentedAttribute,
        *conditions: ColumnElement[bool],
    ) -> int:
        """``SUM(column)`` over matching rows; 0 when nothing matches."""
        stmt = select(func.coalesce(func.sum(column), 0)).where(*conditions)
        result = await session.execute(stmt)
        return int(result.scalar_one())

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        self.log.debug(f"Repository.add: {self._name}", extra={"model": self._name})
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        await session.delete(instance)
        self.log.debug(f"Repository.delete: {self._name}", extra={"model": self._name})

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()
        self.log.debug(f"Repository.flush: {self._name}", extra={"model": self._name})
