from datetime import timedelta

from kungfu import Ok

from conftest import Clock, unwrap
from splitcart.db import MarkerRow, create_database
from splitcart.markers import Guard, MarkerState, MemoryKeystore, SQLAlchemyKeystore

TTL = timedelta(minutes=5)


# ═══════════════════════════════════════════════════════════════════════════════
# MemoryKeystore
# ═══════════════════════════════════════════════════════════════════════════════


async def test_first_claim_wins():
    keystore = MemoryKeystore(Clock())
    assert unwrap(await keystore.claim("k", TTL)) == True
    assert unwrap(await keystore.claim("k", TTL)) == False


async def test_claim_after_expiry_succeeds():
    clock = Clock()
    keystore = MemoryKeystore(clock)
    await keystore.claim("k", TTL)

    clock.advance(minutes=4)
    assert unwrap(await keystore.claim("k", TTL)) == False
    clock.advance(minutes=1)
    assert unwrap(await keystore.claim("k", TTL)) == True


async def test_claim_sweeps_expired_markers_of_other_keys():
    clock = Clock()
    keystore = MemoryKeystore(clock)
    for n in range(3):
        await keystore.claim(f"webhook_processed_PAY-{n}:completed", TTL)
    assert len(keystore) == 3

    clock.advance(minutes=6)
    assert unwrap(await keystore.claim("webhook_processed_PAY-9:completed", TTL)) == True
    assert len(keystore) == 1


async def test_release_reopens_key():
    keystore = MemoryKeystore(Clock())
    await keystore.claim("k", TTL)
    assert unwrap(await keystore.release("k")) == True
    assert unwrap(await keystore.release("k")) == False
    assert unwrap(await keystore.claim("k", TTL)) == True


async def test_complete_keeps_value_and_blocks_claims():
    keystore = MemoryKeystore(Clock())
    await keystore.claim("k", TTL)
    await keystore.complete("k", TTL, "42")

    match await keystore.get("k"):
        case Ok(marker) if marker is not None:
            assert marker.state is MarkerState.DONE
            assert marker.value == "42"
        case other:
            raise AssertionError(other)
    assert unwrap(await keystore.claim("k", TTL)) == False


async def test_guard_prefixes_keys():
    keystore = MemoryKeystore(Clock())
    guard = Guard(keystore, "webhook_processed_", TTL)

    assert guard.key("PAY-1") == "webhook_processed_PAY-1"
    assert unwrap(await guard.seen("PAY-1")) == False
    assert unwrap(await guard.claim("PAY-1")) == True
    assert unwrap(await guard.seen("PAY-1")) == True
    assert unwrap(await keystore.claim("webhook_processed_PAY-1", TTL)) == False


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemyKeystore
# ═══════════════════════════════════════════════════════════════════════════════


async def test_sqlalchemy_keystore_lifecycle():
    clock = Clock()
    factory, engine = await create_database()
    try:
        keystore = SQLAlchemyKeystore(factory, MarkerRow, clock)

        assert unwrap(await keystore.claim("k", TTL)) == True
        assert unwrap(await keystore.claim("k", TTL)) == False

        await keystore.complete("k", TTL, "order-1")
        match await keystore.get("k"):
            case Ok(marker) if marker is not None:
                assert marker.is_done
                assert marker.value == "order-1"
            case other:
                raise AssertionError(other)

        clock.advance(minutes=6)
        assert unwrap(await keystore.get("k")) == None
        assert unwrap(await keystore.claim("k", TTL)) == True

        assert unwrap(await keystore.release("k")) == True
        assert unwrap(await keystore.get("k")) == None
    finally:
        await engine.dispose()
