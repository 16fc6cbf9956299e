"""Pool record store: maps PoolRecord models to the ``raydium_pools`` table."""

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.db.database import Database
from src.models.pool import RaydiumPool
from src.parsers.raydium.models import AccountLayout, PoolRecord

# Python ints stored as decimal strings
_BIG_INT_FIELDS = ("init_base_amount", "init_quote_amount", "k", "open_time")


class PoolStoreError(Exception):
    pass


class PoolRecordNotFound(PoolStoreError):
    pass


class PoolRecordExists(PoolStoreError):
    pass


def _to_row(record: PoolRecord) -> RaydiumPool:
    values = record.model_dump()
    for name in _BIG_INT_FIELDS:
        values[name] = str(values[name])
    values["layout"] = record.layout.value
    return RaydiumPool(**values)


def _to_record(row: RaydiumPool) -> PoolRecord:
    values = {name: getattr(row, name) for name in PoolRecord.model_fields}
    for name in _BIG_INT_FIELDS:
        values[name] = int(values[name])
    values["layout"] = AccountLayout(row.layout)
    return PoolRecord(**values)


class PoolRecordStore:
    """Write-once store of canonical pool records, unique by ``pool_id``."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def put(self, record: PoolRecord) -> int:
        """Persist ``record`` and return its record id. Raises PoolRecordExists."""
        async with self._db.session() as session:
            existing = await session.scalar(
                select(RaydiumPool.id).where(RaydiumPool.pool_id == record.pool_id)
            )
            if existing is not None:
                raise PoolRecordExists(f"pool {record.pool_id} already stored as #{existing}")

            row = _to_row(record)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise PoolRecordExists(f"pool {record.pool_id} already stored") from e
            logger.info(f"[STORE] Saved pool {record.pool_id[:12]} as #{row.id}")
            return row.id

    async def get(self, record_id: int) -> PoolRecord:
        async with self._db.session() as session:
            row = await session.get(RaydiumPool, record_id)
            if row is None:
                raise PoolRecordNotFound(f"no pool record #{record_id}")
            return _to_record(row)

    async def get_by_pool_id(self, pool_id: str) -> PoolRecord | None:
        async with self._db.session() as session:
            row = await session.scalar(select(RaydiumPool).where(RaydiumPool.pool_id == pool_id))
            return _to_record(row) if row is not None else None
