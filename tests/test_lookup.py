from platemerge.lookup import Lookup, LookupStatus, lookup_value


def test_lookup_three_states():
    mapping = {"BC1": "S1", "BC2": "", "BC3": None}
    assert lookup_value(mapping, "BC1") == Lookup.resolved("S1")
    assert lookup_value(mapping, "BC2").status == LookupStatus.EMPTY
    assert lookup_value(mapping, "BC3").status == LookupStatus.EMPTY
    assert lookup_value(mapping, "missing").status == LookupStatus.UNRESOLVED


def test_value_or_falls_back_unless_resolved():
    assert Lookup.resolved("A1").value_or("raw") == "A1"
    assert Lookup.unresolved().value_or("raw") == "raw"
    assert Lookup.empty().value_or("raw") == "raw"
    assert not Lookup.empty().is_resolved
