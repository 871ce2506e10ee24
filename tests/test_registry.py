from PDL.registry import SubjectRegistry
from PDL.subject import Demographics, SubjectRecord

JANE = Demographics("JANE", "DOE", "20150304", "F", "BALTIMORE")
JOHN = Demographics("JOHN", "DOE", "20120101", "M", "BALTIMORE")


def test_resolve_returns_same_instance_for_same_demographics():
    registry = SubjectRegistry("ZB04")
    first = registry.resolve(JANE)
    second = registry.resolve(Demographics("JANE", "DOE", "20150304", "F", "BALTIMORE"))
    assert first is second
    assert len(registry) == 1


def test_resolve_creates_empty_record():
    registry = SubjectRegistry("ZB04")
    record = registry.resolve(JOHN)
    assert record.demographics == JOHN
    assert record.locations == []
    assert record.variables == []
    assert record.is_target_population is False
    assert record.subject_key in registry


def test_distinct_demographics_get_distinct_records():
    registry = SubjectRegistry("ZB04")
    assert registry.resolve(JANE) is not registry.resolve(JOHN)
    assert len(registry) == 2


def test_add_location_deduplicates():
    registry = SubjectRegistry("ZB04")
    record = registry.resolve(JANE)
    assert registry.add_location(record, "ZA01") is True
    assert registry.add_location(record, "ZA01") is False
    assert registry.add_location(record, None) is False
    assert registry.add_location(record, "") is False
    assert record.locations == ["ZA01"]


def test_target_flag_is_sticky():
    registry = SubjectRegistry("ZB04")
    record = registry.resolve(JANE)
    registry.add_location(record, "ZA01")
    assert record.is_target_population is False
    registry.add_location(record, "ZB04-12")
    assert record.is_target_population is True

    again = registry.resolve(JANE)
    registry.add_location(again, "ZC07")
    assert again.is_target_population is True
    assert registry.targets() == [record]


def test_add_keeps_first_snapshot_row():
    registry = SubjectRegistry("ZB04")
    first = registry.add(SubjectRecord(JANE, locations=["ZB04"]))
    second = registry.add(SubjectRecord(JANE, locations=["ZA01"]))
    assert second is first
    assert registry.get(first.subject_key).locations == ["ZB04"]


def test_iteration_is_in_key_order():
    registry = SubjectRegistry("ZB04")
    registry.resolve(JANE)
    registry.resolve(JOHN)
    keys = [record.subject_key for record in registry]
    assert keys == sorted(keys)
