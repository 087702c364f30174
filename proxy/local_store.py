"""
Local replicated block store.

The proxy reads a block database kept in sync with the network by a separate
replication process. It only ever reads it, through the narrow
``LocalBlockStore`` interface, and every answer comes back shaped like the
daemon's own JSON-RPC result for the same method so the two tiers are
interchangeable.
"""
import abc
import asyncio
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String, create_engine, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .constants import BLOCK_LIST_SIZE, LOCAL_STORE_TIMEOUT
from .errors import LocalStoreError

logger = structlog.get_logger()

Base = declarative_base()


class BlockRecord(Base):
    __tablename__ = 'blocks'

    hash = Column(String(64), primary_key=True)
    height = Column(Integer, unique=True, index=True, nullable=False)
    prev_hash = Column(String(64))
    timestamp = Column(Integer)
    difficulty = Column(BigInteger)
    nonce = Column(BigInteger)
    size = Column(Integer)
    reward = Column(BigInteger)
    major_version = Column(Integer)
    minor_version = Column(Integer)
    orphan_status = Column(Boolean, default=False)
    tx_count = Column(Integer, default=0)


class TransactionRecord(Base):
    __tablename__ = 'transactions'

    hash = Column(String(64), primary_key=True)
    block_hash = Column(String(64), ForeignKey('blocks.hash'), index=True, nullable=False)
    fee = Column(BigInteger, default=0)
    amount_out = Column(BigInteger, default=0)
    size = Column(Integer)
    payment_id = Column(String(64))
    mixin = Column(Integer)
    unlock_time = Column(BigInteger, default=0)


class LocalBlockStore(abc.ABC):
    """Read interface of the local replicated store."""

    @abc.abstractmethod
    async def get_blocks(self, height: int) -> Dict[str, Any]:
        """Short descriptions of the blocks ending at ``height``, newest first."""

    @abc.abstractmethod
    async def get_block(self, block_hash: str) -> Dict[str, Any]:
        """A block with its transactions."""

    @abc.abstractmethod
    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        """A transaction with its containing block."""

    @abc.abstractmethod
    async def get_block_count(self) -> Dict[str, Any]:
        """``{"count": n, "status": "OK"}``"""

    @abc.abstractmethod
    async def get_block_hash(self, height: int) -> str:
        """Hash of the block at ``height``."""

    @abc.abstractmethod
    async def get_last_block_header(self) -> Dict[str, Any]:
        """Header of the top block."""

    @abc.abstractmethod
    async def get_block_header_by_hash(self, block_hash: str) -> Dict[str, Any]:
        """Header of the block with ``block_hash``."""

    @abc.abstractmethod
    async def get_block_header_by_height(self, height: int) -> Dict[str, Any]:
        """Header of the block at ``height``."""

    async def close(self) -> None:
        """Release any resources held by the store."""


def _short_block(block: BlockRecord) -> Dict[str, Any]:
    return {
        "cumul_size": block.size,
        "difficulty": block.difficulty,
        "hash": block.hash,
        "height": block.height,
        "timestamp": block.timestamp,
        "tx_count": block.tx_count,
    }


def _header(block: BlockRecord, top_height: int) -> Dict[str, Any]:
    return {
        "block_size": block.size,
        "depth": top_height - block.height,
        "difficulty": block.difficulty,
        "hash": block.hash,
        "height": block.height,
        "major_version": block.major_version,
        "minor_version": block.minor_version,
        "nonce": block.nonce,
        "num_txes": block.tx_count,
        "orphan_status": bool(block.orphan_status),
        "prev_hash": block.prev_hash,
        "reward": block.reward,
        "timestamp": block.timestamp,
    }


def _short_transaction(tx: TransactionRecord) -> Dict[str, Any]:
    return {
        "amount_out": tx.amount_out,
        "fee": tx.fee,
        "hash": tx.hash,
        "size": tx.size,
    }


class SqlBlockStore(LocalBlockStore):
    """
    ``LocalBlockStore`` over the replicated SQL database.

    SQLAlchemy sessions are synchronous, so each read runs in the loop's
    default executor and is abandoned after ``timeout`` seconds.
    """

    def __init__(self, db_url: Optional[str] = None, timeout: float = LOCAL_STORE_TIMEOUT,
                 engine: Optional[Engine] = None):
        """
        Args:
            db_url: SQLAlchemy database URL of the replicated store
            timeout: Time allowed per read, in seconds
            engine: Pre-built engine, used instead of ``db_url`` when given
        """
        if engine is None:
            if not db_url:
                raise ValueError("Either db_url or engine must be provided")
            engine = create_engine(db_url)

        self.engine = engine
        self.Session = sessionmaker(bind=self.engine)
        self.timeout = timeout
        logger.info("local_store_initialized", url=str(self.engine.url))

    def create_schema(self) -> None:
        """Create the store's tables if they don't exist."""
        Base.metadata.create_all(self.engine)

    async def _run(self, operation: str, reader: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, reader, *args),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise LocalStoreError(f"{operation} timed out after {self.timeout}s") from e
        except SQLAlchemyError as e:
            raise LocalStoreError(f"{operation} failed: {e}") from e

    # Synchronous readers, executed off the event loop

    def _top_height(self, session) -> int:
        top = session.query(func.max(BlockRecord.height)).scalar()
        if top is None:
            raise LocalStoreError("Local store holds no blocks")
        return top

    def _block_by(self, session, **filters: Any) -> BlockRecord:
        block = session.query(BlockRecord).filter_by(**filters).first()
        if block is None:
            raise LocalStoreError(f"Block not found: {filters}")
        return block

    def _read_blocks(self, height: int) -> Dict[str, Any]:
        with self.Session() as session:
            top = self._top_height(session)
            if height > top:
                raise LocalStoreError(f"Height {height} is above local top {top}")
            blocks: List[BlockRecord] = (
                session.query(BlockRecord)
                .filter(BlockRecord.height <= height)
                .filter(BlockRecord.height > height - BLOCK_LIST_SIZE)
                .order_by(BlockRecord.height.desc())
                .all()
            )
            if not blocks:
                raise LocalStoreError(f"No blocks at or below height {height}")
            return {"blocks": [_short_block(block) for block in blocks], "status": "OK"}

    def _read_block(self, block_hash: str) -> Dict[str, Any]:
        with self.Session() as session:
            top = self._top_height(session)
            block = self._block_by(session, hash=block_hash)
            transactions = session.query(TransactionRecord).filter_by(block_hash=block.hash).all()
            payload = _header(block, top)
            payload["transactions"] = [_short_transaction(tx) for tx in transactions]
            payload["totalFeeAmount"] = sum(tx.fee or 0 for tx in transactions)
            return {"block": payload, "status": "OK"}

    def _read_transaction(self, tx_hash: str) -> Dict[str, Any]:
        with self.Session() as session:
            tx = session.query(TransactionRecord).filter_by(hash=tx_hash).first()
            if tx is None:
                raise LocalStoreError(f"Transaction not found: {tx_hash}")
            block = self._block_by(session, hash=tx.block_hash)
            return {
                "block": _short_block(block),
                "status": "OK",
                "tx": {
                    "hash": tx.hash,
                    "unlock_time": tx.unlock_time,
                },
                "txDetails": {
                    "amount_out": tx.amount_out,
                    "fee": tx.fee,
                    "hash": tx.hash,
                    "mixin": tx.mixin,
                    "paymentId": tx.payment_id or "",
                    "size": tx.size,
                },
            }

    def _read_block_count(self) -> Dict[str, Any]:
        with self.Session() as session:
            return {"count": self._top_height(session) + 1, "status": "OK"}

    def _read_block_hash(self, height: int) -> str:
        with self.Session() as session:
            return self._block_by(session, height=height).hash

    def _read_header(self, **filters: Any) -> Dict[str, Any]:
        with self.Session() as session:
            top = self._top_height(session)
            if not filters:
                filters = {"height": top}
            block = self._block_by(session, **filters)
            return {"block_header": _header(block, top), "status": "OK"}

    # LocalBlockStore

    async def get_blocks(self, height: int) -> Dict[str, Any]:
        return await self._run("get_blocks", self._read_blocks, height)

    async def get_block(self, block_hash: str) -> Dict[str, Any]:
        return await self._run("get_block", self._read_block, block_hash)

    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        return await self._run("get_transaction", self._read_transaction, tx_hash)

    async def get_block_count(self) -> Dict[str, Any]:
        return await self._run("get_block_count", self._read_block_count)

    async def get_block_hash(self, height: int) -> str:
        return await self._run("get_block_hash", self._read_block_hash, height)

    async def get_last_block_header(self) -> Dict[str, Any]:
        return await self._run("get_last_block_header", self._read_header)

    async def get_block_header_by_hash(self, block_hash: str) -> Dict[str, Any]:
        return await self._run("get_block_header_by_hash",
                               lambda: self._read_header(hash=block_hash))

    async def get_block_header_by_height(self, height: int) -> Dict[str, Any]:
        return await self._run("get_block_header_by_height",
                               lambda: self._read_header(height=height))

    async def close(self) -> None:
        self.engine.dispose()
