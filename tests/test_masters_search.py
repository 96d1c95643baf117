from __future__ import annotations

from conftest import make_master
from dispatch_service.services.masters_search import available_first, search_masters


def _masters():
    return [
        make_master("m-1", full_name="Bakyt Usenov", phone="+996700111222"),
        make_master("m-2", full_name="Aibek Toktosunov", phone="+996555333444", active_jobs=3),
        make_master("m-3", full_name="Azamat Bakirov", phone="+996777555666"),
    ]


def test_empty_query_lists_available_masters_first():
    names = [m.full_name for m in search_masters(_masters(), "  ")]
    assert names == ["Azamat Bakirov", "Bakyt Usenov", "Aibek Toktosunov"]


def test_fuzzy_name_match_tolerates_typos():
    result = search_masters(_masters(), "bakit usenov")
    assert result[0].id == "m-1"


def test_phone_digits_match():
    result = search_masters(_masters(), "555 333")
    assert [m.id for m in result] == ["m-2"]


def test_unrelated_query_finds_nothing():
    assert search_masters(_masters(), "zzzzqqq") == []


def test_available_first_orders_by_capacity_then_name():
    masters = [
        make_master("m-1", full_name="Zarina", active_jobs=3),
        make_master("m-2", full_name="bolot"),
        make_master("m-3", full_name="Aida", max_active_jobs=None, active_jobs=10),
    ]
    assert [m.id for m in available_first(masters)] == ["m-3", "m-2", "m-1"]
