from __future__ import annotations

import itertools
from datetime import timedelta

from conftest import NOW, make_order
from dispatch_service.core.dto import ClientRef, MasterRef
from dispatch_service.db.models import OrderStatus, OrderUrgency
from dispatch_service.services.queue_filters import (
    QueueFilters,
    SortOrder,
    StatusTab,
    apply_filters,
    matches_search,
    paginate,
    status_counts,
)


def test_search_by_id_suffix_and_substring():
    order = make_order(id="7f3a9c21-aa10-4e55-b0c4-00000012ab34")

    assert matches_search(order, "#12ab34")
    assert matches_search(order, "AB34")
    assert not matches_search(order, "7f3a9c")  # short query is a suffix match only
    assert matches_search(order, "aa10-4e55")


def test_search_by_names_address_description_and_phone():
    order = make_order(
        client=ClientRef(full_name="Aigul Sadykova", phone="+996 555 12-34-56"),
        master=MasterRef("m-1", "Bakyt Usenov"),
        full_address="Manas 44, apt 3",
        problem_description="Boiler makes noise",
    )

    assert matches_search(order, "aigul")
    assert matches_search(order, "USENOV")
    assert matches_search(order, "manas 44")
    assert matches_search(order, "boiler")
    assert matches_search(order, "555-123")
    assert not matches_search(order, "999")
    assert matches_search(order, "   ")


def test_client_name_falls_back_to_flat_field():
    order = make_order(client=None, client_name="Nurlan")
    assert matches_search(order, "nurl")


def test_status_tabs():
    orders = [
        make_order(status=OrderStatus.PLACED),
        make_order(status=OrderStatus.STARTED),
        make_order(status=OrderStatus.COMPLETED),
        make_order(status=OrderStatus.CONFIRMED),
        make_order(status=OrderStatus.CANCELED_BY_CLIENT),
        make_order(status=OrderStatus.CANCELED_BY_MASTER),
        make_order(status=OrderStatus.EXPIRED),
    ]
    counts = status_counts(orders)
    assert counts == {
        StatusTab.ACTIVE: 2,
        StatusTab.PAYMENT: 1,
        StatusTab.CONFIRMED: 1,
        StatusTab.CANCELED: 2,
    }
    canceled = apply_filters(orders, QueueFilters(status=StatusTab.CANCELED))
    assert {o.status for o in canceled} == {OrderStatus.CANCELED_BY_CLIENT, OrderStatus.CANCELED_BY_MASTER}


def test_sort_is_stable_by_created_at():
    same_time = NOW - timedelta(hours=1)
    a = make_order(created_at=same_time)
    b = make_order(created_at=same_time)
    older = make_order(created_at=NOW - timedelta(hours=2))

    newest = apply_filters([a, b, older], QueueFilters())
    assert [o.id for o in newest] == [a.id, b.id, older.id]

    oldest = apply_filters([a, b, older], QueueFilters(sort=SortOrder.OLDEST))
    assert [o.id for o in oldest] == [older.id, a.id, b.id]


def test_filter_predicates_commute_for_fixed_sort():
    orders = [
        make_order(
            urgency=urgency,
            service_type=service,
            problem_description=text,
            created_at=NOW - timedelta(minutes=minutes),
        )
        for minutes, (urgency, service, text) in enumerate(
            itertools.product(
                [OrderUrgency.PLANNED, OrderUrgency.URGENT],
                ["plumbing", "cleaning"],
                ["leak", "dust"],
            )
        )
    ]
    full = QueueFilters(search="leak", urgency=OrderUrgency.URGENT, service_type="plumbing")

    combined = apply_filters(orders, full)
    step = apply_filters(orders, QueueFilters(service_type="plumbing"))
    step = apply_filters(step, QueueFilters(urgency=OrderUrgency.URGENT))
    step = apply_filters(step, QueueFilters(search="leak"))

    assert [o.id for o in combined] == [o.id for o in step]
    assert len(combined) == 1


def test_owner_filter_uses_assigned_or_creating_dispatcher():
    mine = make_order(dispatcher_id="disp-1")
    handed_to_me = make_order(dispatcher_id="disp-9", assigned_dispatcher_id="disp-1")
    other = make_order(dispatcher_id="disp-9")

    result = apply_filters([mine, handed_to_me, other], QueueFilters(owner_id="disp-1"))
    assert {o.id for o in result} == {mine.id, handed_to_me.id}


def test_pagination_clamps_past_the_end():
    orders = [make_order() for _ in range(45)]

    page = paginate(orders, 3, 20)
    assert page.page == 3
    assert len(page.items) == 5
    assert page.total_pages == 3
    assert not page.has_next

    clamped = paginate(orders, 9, 20)
    assert clamped.page == 3

    compact = paginate(orders, 1, 10)
    assert compact.total_pages == 5
    assert paginate([], 4, 20).page == 1


def test_filters_round_trip_through_dict():
    filters = QueueFilters(search="x", status=StatusTab.PAYMENT, urgency=OrderUrgency.EMERGENCY, sort=SortOrder.OLDEST)
    assert QueueFilters.from_dict(filters.to_dict()) == filters
    assert QueueFilters.from_dict({"status": "bogus", "urgency": "all", "service_type": "all"}) == QueueFilters()
