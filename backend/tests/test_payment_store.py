from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from flightpay.services.payment_store import SqlAlchemyPaymentStore

from .helpers import ORDER_ID, TRANSACTION_ID


@pytest.mark.anyio
async def test_create_and_lookup(store: SqlAlchemyPaymentStore) -> None:
    record = await store.create("BK1", 150000, "EGP", ORDER_ID, merchant_order_id="BK1_1_abc")

    assert record.id.startswith("pay_")
    assert record.status == "pending"
    assert (await store.get(record.id)) == record
    assert (await store.find_by_gateway_order_id(ORDER_ID)) == record
    assert await store.get("pay_missing") is None


@pytest.mark.anyio
async def test_gateway_order_id_is_unique(store: SqlAlchemyPaymentStore) -> None:
    await store.create("BK1", 150000, "EGP", ORDER_ID)

    with pytest.raises(IntegrityError):
        await store.create("BK2", 150000, "EGP", ORDER_ID)


@pytest.mark.anyio
async def test_conditional_update_loses_to_earlier_writer(store: SqlAlchemyPaymentStore) -> None:
    record = await store.create("BK1", 150000, "EGP", ORDER_ID)

    first = await store.apply_transaction(record.id, "paid", TRANSACTION_ID, "card", {"id": TRANSACTION_ID})
    second = await store.apply_transaction(record.id, "failed", TRANSACTION_ID + 1, "card", {"id": TRANSACTION_ID + 1})

    assert first is not None and first.status == "paid"
    assert second is None

    current = await store.get(record.id)
    assert current.status == "paid"
    assert current.gateway_transaction_id == TRANSACTION_ID


@pytest.mark.anyio
async def test_update_status_checks_expected_status(store: SqlAlchemyPaymentStore) -> None:
    record = await store.create("BK1", 150000, "EGP", ORDER_ID)

    assert await store.update_status(record.id, expected_status="paid", new_status="refunded") is None
    updated = await store.update_status(record.id, expected_status="pending", new_status="failed")

    assert updated.status == "failed"


@pytest.mark.anyio
async def test_find_by_booking_lists_newest_first(store: SqlAlchemyPaymentStore) -> None:
    first = await store.create("BK1", 150000, "EGP", ORDER_ID)
    second = await store.create("BK1", 150000, "EGP", ORDER_ID + 1)
    await store.create("BK2", 90000, "EGP", ORDER_ID + 2)

    records = await store.find_by_booking_id("BK1")

    assert [r.id for r in records] == [second.id, first.id]


@pytest.mark.anyio
async def test_events_are_appended_in_order(store: SqlAlchemyPaymentStore) -> None:
    await store.append_event("callback", gateway_order_id=ORDER_ID, classification="unknown_order", payload={"a": 1})
    await store.append_event("callback", gateway_order_id=ORDER_ID, classification="duplicate", payload={"a": 2})

    events = await store.list_events(gateway_order_id=ORDER_ID)

    assert [event.payload["a"] for event in events] == [1, 2]
    assert events[0].id < events[1].id


@pytest.mark.anyio
async def test_find_stale_pending_ignores_recent_and_settled(store: SqlAlchemyPaymentStore) -> None:
    stale = await store.create("BK1", 150000, "EGP", ORDER_ID)
    settled = await store.create("BK2", 150000, "EGP", ORDER_ID + 1)
    await store.update_status(settled.id, expected_status="pending", new_status="failed")

    assert await store.find_stale_pending(stale.created_at) == []

    later = datetime.utcnow() + timedelta(minutes=1)
    assert [r.id for r in await store.find_stale_pending(later)] == [stale.id]
