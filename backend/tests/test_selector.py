"""Unit tests for picking emails to classify."""
from inbox_buckets.records import EmailRecord
from inbox_buckets.services.selector import select_for_classification


def _emails():
    return [
        EmailRecord(id="u1"),
        EmailRecord(id="w1", bucket_id="work"),
        EmailRecord(id="p1", bucket_id="personal"),
        EmailRecord(id="u2"),
        EmailRecord(id="w2", bucket_id="work"),
    ]


def test_default_selects_only_unclassified():
    assert [e.id for e in select_for_classification(_emails())] == ["u1", "u2"]


def test_chosen_bucket_is_unioned_with_unclassified():
    selected = select_for_classification(_emails(), {"work"})
    assert [e.id for e in selected] == ["u1", "w1", "u2", "w2"]


def test_reclassify_five_in_one_bucket_ignores_other_buckets():
    emails = [EmailRecord(id=f"r{i}", bucket_id="receipts") for i in range(5)]
    emails += [EmailRecord(id=f"o{i}", bucket_id="other") for i in range(40)]
    selected = select_for_classification(emails, {"receipts"})
    assert [e.id for e in selected] == [f"r{i}" for i in range(5)]


def test_empty_selection():
    emails = [EmailRecord(id="w1", bucket_id="work")]
    assert select_for_classification(emails) == []
    assert select_for_classification([], {"work"}) == []


def test_repeated_ids_selected_once():
    emails = [EmailRecord(id="u1"), EmailRecord(id="u1")]
    assert [e.id for e in select_for_classification(emails)] == ["u1"]
