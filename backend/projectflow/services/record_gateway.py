"""Relational query/write gateway over the SQLAlchemy models"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Type

from sqlalchemy import delete, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from projectflow.database import Base
from projectflow.models import AssistanceRequest, Profile, Project
from projectflow.schemas.realtime import ChangeEvent, ChangeKind
from projectflow.services.realtime_service import RealtimeService

logger = logging.getLogger(__name__)

PROFILES_TABLE = Profile.__tablename__
PROJECTS_TABLE = Project.__tablename__
ASSISTANCE_TABLE = AssistanceRequest.__tablename__

TABLE_MODELS: Dict[str, Type[Base]] = {
    PROFILES_TABLE: Profile,
    PROJECTS_TABLE: Project,
    ASSISTANCE_TABLE: AssistanceRequest,
}

Row = Dict[str, Any]


class GatewayError(Exception):
    """Base exception for relational gateway errors"""
    pass


class UnknownTableError(GatewayError):
    """Table name is not served by this gateway"""
    pass


class UnknownColumnError(GatewayError):
    """Column name does not exist on the table"""
    pass


class RecordNotFoundError(GatewayError):
    """No row with the requested id"""
    pass


class RecordGateway:
    """
    Table-name based CRUD over the ORM models.

    Rows go in and come out as plain dicts keyed by database column names
    (`clientuid`, `projectId`, ...), matching what the realtime feed carries.
    Every committed write is published as a ChangeEvent when a realtime
    service is attached.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        realtime: Optional[RealtimeService] = None,
    ):
        self.session_factory = session_factory
        self.realtime = realtime

    @staticmethod
    def _model(table: str) -> Type[Base]:
        try:
            return TABLE_MODELS[table]
        except KeyError:
            raise UnknownTableError(f"Unknown table: {table}")

    @staticmethod
    def _attributes(model: Type[Base]) -> Dict[str, str]:
        """Map database column names to mapped attribute names"""
        return {column.name: key for key, column in inspect(model).columns.items()}

    def _attribute(self, model: Type[Base], column: str) -> str:
        try:
            return self._attributes(model)[column]
        except KeyError:
            raise UnknownColumnError(f"Unknown column {column} on {model.__tablename__}")

    def _to_row(self, instance: Base) -> Row:
        return {
            column: getattr(instance, attribute)
            for column, attribute in self._attributes(type(instance)).items()
        }

    async def _publish(self, table: str, kind: ChangeKind,
                       new: Optional[Row] = None, old: Optional[Row] = None):
        if self.realtime is None:
            return
        # The write is committed at this point; publish failures are logged only
        try:
            await self.realtime.publish(ChangeEvent(table=table, kind=kind, new=new, old=old))
        except Exception as e:
            logger.error(f"Change on {table} committed but not published: {e}")

    async def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> List[Row]:
        """
        Fetch rows matching equality filters.

        Args:
            table: Table name
            filters: Column name to value, combined with AND
            order_by: Column to sort by
            descending: Sort direction when order_by is given

        Returns:
            Matching rows
        """
        model = self._model(table)
        stmt = select(model)
        for column, value in (filters or {}).items():
            stmt = stmt.where(getattr(model, self._attribute(model, column)) == value)
        if order_by:
            attribute = getattr(model, self._attribute(model, order_by))
            stmt = stmt.order_by(attribute.desc() if descending else attribute.asc())

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [self._to_row(instance) for instance in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error selecting from {table}: {e}")
            raise GatewayError(f"Failed to select from {table}: {e}")

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """
        Insert one row; server defaults (id, created_at) are filled in.

        Returns:
            The stored row
        """
        model = self._model(table)
        values = {self._attribute(model, column): value for column, value in row.items()}

        try:
            async with self.session_factory() as session:
                instance = model(**values)
                session.add(instance)
                await session.commit()
                await session.refresh(instance)
                stored = self._to_row(instance)
        except SQLAlchemyError as e:
            logger.error(f"Error inserting into {table}: {e}")
            raise GatewayError(f"Failed to insert into {table}: {e}")

        logger.info(f"Inserted {table} row {stored['id']}")
        await self._publish(table, ChangeKind.INSERT, new=stored)
        return stored

    async def update(self, table: str, record_id: str, changes: Mapping[str, Any]) -> Row:
        """
        Update columns of one row.

        Returns:
            The stored row after the update

        Raises:
            RecordNotFoundError: If no row has this id
        """
        model = self._model(table)
        values = {self._attribute(model, column): value for column, value in changes.items()}

        try:
            async with self.session_factory() as session:
                instance = await session.get(model, record_id)
                if instance is None:
                    raise RecordNotFoundError(f"{table} row {record_id} not found")
                old = self._to_row(instance)
                for attribute, value in values.items():
                    setattr(instance, attribute, value)
                await session.commit()
                await session.refresh(instance)
                stored = self._to_row(instance)
        except SQLAlchemyError as e:
            logger.error(f"Error updating {table} row {record_id}: {e}")
            raise GatewayError(f"Failed to update {table}: {e}")

        logger.info(f"Updated {table} row {record_id}: {sorted(changes)}")
        await self._publish(table, ChangeKind.UPDATE, new=stored, old=old)
        return stored

    async def delete(self, table: str, record_id: str) -> Optional[Row]:
        """
        Delete one row by id. Deleting a missing row is a no-op.

        Returns:
            The deleted row, or None when nothing matched
        """
        model = self._model(table)

        try:
            async with self.session_factory() as session:
                instance = await session.get(model, record_id)
                if instance is None:
                    return None
                old = self._to_row(instance)
                await session.delete(instance)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {table} row {record_id}: {e}")
            raise GatewayError(f"Failed to delete from {table}: {e}")

        logger.info(f"Deleted {table} row {record_id}")
        await self._publish(table, ChangeKind.DELETE, old=old)
        return old

    async def delete_where(self, table: str, column: str, value: Any) -> List[Row]:
        """
        Delete every row whose column equals value.

        Returns:
            The deleted rows
        """
        model = self._model(table)
        attribute = getattr(model, self._attribute(model, column))

        try:
            async with self.session_factory() as session:
                result = await session.execute(select(model).where(attribute == value))
                deleted = [self._to_row(instance) for instance in result.scalars().all()]
                if deleted:
                    await session.execute(delete(model).where(attribute == value))
                    await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting from {table} where {column}={value}: {e}")
            raise GatewayError(f"Failed to delete from {table}: {e}")

        logger.info(f"Deleted {len(deleted)} {table} row(s) where {column}={value}")
        for old in deleted:
            await self._publish(table, ChangeKind.DELETE, old=old)
        return deleted
