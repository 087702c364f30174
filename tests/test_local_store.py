import asyncio

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from proxy.errors import LocalStoreError
from proxy.local_store import BlockRecord, SqlBlockStore, TransactionRecord

TOP_HEIGHT = 39


def block_hash(height):
    return f"{height:064x}"


@pytest.fixture
def engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )


@pytest.fixture
def empty_store(engine):
    store = SqlBlockStore(engine=engine, timeout=5)
    store.create_schema()
    return store


@pytest.fixture
def store(empty_store):
    """A store replicated up to height 39 with two transactions in block 10."""
    with empty_store.Session() as session:
        for height in range(TOP_HEIGHT + 1):
            session.add(BlockRecord(
                hash=block_hash(height),
                height=height,
                prev_hash=block_hash(height - 1) if height else None,
                timestamp=1500000000 + height * 30,
                difficulty=1000 + height,
                nonce=height,
                size=400,
                reward=2900000,
                major_version=4,
                minor_version=0,
                orphan_status=False,
                tx_count=3 if height == 10 else 1
            ))
        session.add(TransactionRecord(hash="tx_a", block_hash=block_hash(10), fee=10,
                                      amount_out=500, size=300, payment_id="pid", mixin=3))
        session.add(TransactionRecord(hash="tx_b", block_hash=block_hash(10), fee=15,
                                      amount_out=700, size=320, mixin=3))
        session.commit()
    return empty_store


def test_block_count(store):
    assert asyncio.run(store.get_block_count()) == {"count": TOP_HEIGHT + 1, "status": "OK"}


def test_blocks_list_is_newest_first(store):
    payload = asyncio.run(store.get_blocks(35))

    assert payload["status"] == "OK"
    heights = [block["height"] for block in payload["blocks"]]
    assert len(heights) == 30
    assert heights[0] == 35
    assert heights[-1] == 6


def test_blocks_above_top_are_missing(store):
    with pytest.raises(LocalStoreError):
        asyncio.run(store.get_blocks(TOP_HEIGHT + 5))


def test_block_with_transactions(store):
    payload = asyncio.run(store.get_block(block_hash(10)))

    block = payload["block"]
    assert block["height"] == 10
    assert block["depth"] == TOP_HEIGHT - 10
    assert block["totalFeeAmount"] == 25
    assert {tx["hash"] for tx in block["transactions"]} == {"tx_a", "tx_b"}


def test_transaction(store):
    payload = asyncio.run(store.get_transaction("tx_a"))

    assert payload["status"] == "OK"
    assert payload["block"]["height"] == 10
    assert payload["txDetails"]["fee"] == 10
    assert payload["txDetails"]["paymentId"] == "pid"


def test_block_hash(store):
    assert asyncio.run(store.get_block_hash(12)) == block_hash(12)


def test_headers(store):
    last = asyncio.run(store.get_last_block_header())
    by_height = asyncio.run(store.get_block_header_by_height(30))
    by_hash = asyncio.run(store.get_block_header_by_hash(block_hash(30)))

    assert last["block_header"]["height"] == TOP_HEIGHT
    assert last["block_header"]["depth"] == 0
    assert by_height == by_hash
    assert by_height["block_header"]["depth"] == 9
    assert by_height["block_header"]["prev_hash"] == block_hash(29)


def test_missing_records(store):
    with pytest.raises(LocalStoreError):
        asyncio.run(store.get_block("ff" * 32))
    with pytest.raises(LocalStoreError):
        asyncio.run(store.get_transaction("tx_missing"))
    with pytest.raises(LocalStoreError):
        asyncio.run(store.get_block_hash(1000))


def test_empty_store(empty_store):
    with pytest.raises(LocalStoreError):
        asyncio.run(empty_store.get_block_count())
    with pytest.raises(LocalStoreError):
        asyncio.run(empty_store.get_last_block_header())


def test_store_requires_a_database():
    with pytest.raises(ValueError):
        SqlBlockStore()


def test_close_disposes_engine(store):
    asyncio.run(store.close())
