"""
Cached Repository

SQLAlchemy async repository whose every call is routed through a
QueryInterceptor. Each method describes itself as an Operation (entity type,
action, argument payload) and hands the interceptor a continuation that
runs the real statement.

Rows are returned as plain dicts so that results can be stored by the tag
store and come back in the same shape on a cache hit.
"""

from typing import Any, Dict, List, Optional, Type

import structlog
from sqlalchemy import delete as sa_delete, func, inspect as sa_inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.cache.entities import Operation, QueryExecutor
from ..domain.cache.repository_interfaces import QueryInterceptor
from ..domain.cache.value_objects import QueryAction

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100


class CachedRepository:
    """
    Base repository with read-through caching.

    Subclasses may pin ``model`` and ``entity_name`` and add query methods
    built with ``_run``.
    """

    def __init__(
        self,
        session: AsyncSession,
        model: Type[Any],
        interceptor: QueryInterceptor,
        entity_name: Optional[str] = None,
    ):
        """
        Initialize repository with strict input validation.

        Args:
            session: AsyncSession for database operations
            model: SQLAlchemy mapped class
            interceptor: Cache interceptor every operation passes through
            entity_name: Entity type used for cache tags, defaults to the class name

        Raises:
            TypeError: If session is not AsyncSession or model is not mapped
        """
        if not isinstance(session, AsyncSession):
            raise TypeError(
                f"session must be AsyncSession instance, got {type(session).__name__}"
            )

        if not model or not hasattr(model, "__tablename__"):
            raise TypeError(
                f"model must be valid SQLAlchemy model with __tablename__, got {type(model).__name__}"
            )

        self.session = session
        self.model = model
        self.interceptor = interceptor
        self.entity_name = entity_name or model.__name__
        self._columns = {attr.key for attr in sa_inspect(model).column_attrs}
        self._primary_key = sa_inspect(model).primary_key[0].key

    # Helpers

    def to_dict(self, obj: Any) -> Dict[str, Any]:
        return {key: getattr(obj, key) for key in self._columns}

    def _check_columns(self, values: Optional[Dict[str, Any]], purpose: str) -> None:
        unknown = sorted(set(values or {}) - self._columns)
        if unknown:
            raise ValueError(
                f"Unknown {purpose} column(s) for {self.entity_name}: {unknown}"
            )

    def _conditions(self, where: Optional[Dict[str, Any]]) -> list:
        return [getattr(self.model, key) == value for key, value in (where or {}).items()]

    async def _run(self, action: QueryAction, args: Dict[str, Any], proceed: QueryExecutor) -> Any:
        operation = Operation(model=self.entity_name, action=action.value, args=args)
        try:
            return await self.interceptor.intercept(operation, proceed)
        except Exception as e:
            logger.error(
                "Repository: Operation failed",
                model=self.entity_name,
                action=action.value,
                error=str(e),
                exc_info=True,
            )
            raise  # Preserve full error context

    # Reads

    async def find_unique(self, id: Any) -> Optional[Dict[str, Any]]:
        """Get one row by primary key."""
        if id is None:
            raise ValueError("Entity id is required (cannot be None)")

        async def query(args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            obj = await self.session.get(self.model, args["where"][self._primary_key])
            return self.to_dict(obj) if obj is not None else None

        return await self._run(
            QueryAction.FIND_UNIQUE, {"where": {self._primary_key: id}}, query
        )

    async def find_first(
        self, where: Optional[Dict[str, Any]] = None, order_by: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Get the first row matching equality filters."""
        self._check_columns(where, "filter")
        if order_by:
            self._check_columns({order_by.lstrip("-"): None}, "order")

        async def query(args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            stmt = select(self.model).where(*self._conditions(args["where"]))
            stmt = self._ordered(stmt, args["order_by"]).limit(1)
            result = await self.session.execute(stmt)
            obj = result.scalars().first()
            return self.to_dict(obj) if obj is not None else None

        return await self._run(
            QueryAction.FIND_FIRST, {"where": where or {}, "order_by": order_by}, query
        )

    async def find_many(
        self,
        where: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        take: int = MAX_PAGE_SIZE,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List rows matching equality filters.

        Args:
            where: Column equality filters
            skip: Number of records to skip (pagination)
            take: Maximum records to return (max 100)
            order_by: Column name, prefixed with ``-`` for descending order
        """
        self._check_columns(where, "filter")
        if order_by:
            self._check_columns({order_by.lstrip("-"): None}, "order")
        if take > MAX_PAGE_SIZE:
            raise ValueError(f"take cannot exceed {MAX_PAGE_SIZE}")
        if skip < 0:
            raise ValueError("skip must be non-negative")

        async def query(args: Dict[str, Any]) -> List[Dict[str, Any]]:
            stmt = select(self.model).where(*self._conditions(args["where"]))
            stmt = self._ordered(stmt, args["order_by"])
            stmt = stmt.offset(args["skip"]).limit(args["take"])
            result = await self.session.execute(stmt)
            rows = [self.to_dict(obj) for obj in result.scalars().all()]

            logger.debug(
                "Repository: Entities listed",
                model=self.entity_name,
                count=len(rows),
                skip=args["skip"],
                take=args["take"],
            )
            return rows

        return await self._run(
            QueryAction.FIND_MANY,
            {"where": where or {}, "skip": skip, "take": take, "order_by": order_by},
            query,
        )

    async def count(self, where: Optional[Dict[str, Any]] = None) -> int:
        """Count rows matching equality filters."""
        self._check_columns(where, "filter")

        async def query(args: Dict[str, Any]) -> int:
            stmt = (
                select(func.count())
                .select_from(self.model)
                .where(*self._conditions(args["where"]))
            )
            result = await self.session.execute(stmt)
            return result.scalar_one()

        return await self._run(QueryAction.COUNT, {"where": where or {}}, query)

    def _ordered(self, stmt, order_by: Optional[str]):
        if not order_by:
            return stmt
        column = getattr(self.model, order_by.lstrip("-"))
        return stmt.order_by(column.desc() if order_by.startswith("-") else column.asc())

    # Writes

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it."""
        if not data:
            raise ValueError("Entity data is required (cannot be empty)")
        self._check_columns(data, "data")

        async def query(args: Dict[str, Any]) -> Dict[str, Any]:
            obj = self.model(**args["data"])
            self.session.add(obj)
            await self.session.flush()
            await self.session.refresh(obj)

            logger.info(
                "Repository: Entity created",
                model=self.entity_name,
                entity_id=str(getattr(obj, self._primary_key)),
            )
            return self.to_dict(obj)

        return await self._run(QueryAction.CREATE, {"data": data}, query)

    async def update(self, id: Any, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update a row by primary key; None when it does not exist."""
        if id is None:
            raise ValueError("Entity id is required (cannot be None)")
        self._check_columns(data, "data")

        async def query(args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            obj = await self.session.get(self.model, args["where"][self._primary_key])
            if obj is None:
                logger.warning(
                    "Repository: Entity not found for update",
                    model=self.entity_name,
                    entity_id=str(id),
                )
                return None

            for key, value in args["data"].items():
                setattr(obj, key, value)
            await self.session.flush()
            await self.session.refresh(obj)

            logger.info(
                "Repository: Entity updated",
                model=self.entity_name,
                entity_id=str(id),
            )
            return self.to_dict(obj)

        return await self._run(
            QueryAction.UPDATE,
            {"where": {self._primary_key: id}, "data": data},
            query,
        )

    async def delete(self, id: Any) -> bool:
        """Delete a row by primary key; False when it does not exist."""
        if id is None:
            raise ValueError("Entity id is required (cannot be None)")

        async def query(args: Dict[str, Any]) -> bool:
            obj = await self.session.get(self.model, args["where"][self._primary_key])
            if obj is None:
                return False
            await self.session.delete(obj)
            await self.session.flush()

            logger.info(
                "Repository: Entity deleted",
                model=self.entity_name,
                entity_id=str(id),
            )
            return True

        return await self._run(
            QueryAction.DELETE, {"where": {self._primary_key: id}}, query
        )

    async def delete_many(self, where: Dict[str, Any]) -> int:
        """Delete rows matching equality filters and return how many were removed."""
        if not where:
            raise ValueError("delete_many requires at least one filter")
        self._check_columns(where, "filter")

        async def query(args: Dict[str, Any]) -> int:
            stmt = sa_delete(self.model).where(*self._conditions(args["where"]))
            result = await self.session.execute(stmt)
            await self.session.flush()
            return result.rowcount

        return await self._run(QueryAction.DELETE_MANY, {"where": where}, query)
