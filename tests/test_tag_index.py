import pytest

from eventhub.errors import NotFound, Unauthorized
from eventhub.services.tag_index import MAX_TAG_LENGTH, MAX_TAGS, normalize_tags


def test_normalize_trims_and_drops_empty():
    assert normalize_tags(["  Tech ", "", "   ", "Art"]) == ["Tech", "Art"]


def test_normalize_dedupes_case_sensitively():
    """'tech' and 'Tech' are different tags; exact repeats collapse"""
    assert normalize_tags(["Tech", "tech", "Tech", " Tech "]) == ["Tech", "tech"]


def test_normalize_caps_count_and_length():
    tags = [f"tag-{i}" for i in range(8)] + ["x" * 40]
    result = normalize_tags(tags)

    assert result == ["tag-0", "tag-1", "tag-2", "tag-3", "tag-4"]
    assert len(result) == MAX_TAGS


def test_normalize_truncates_long_tags():
    result = normalize_tags(["a" * 25, "b" * 19 + "   c"])

    assert result == ["a" * MAX_TAG_LENGTH, "b" * 19]
    assert all(len(tag) <= MAX_TAG_LENGTH for tag in result)


def test_normalize_dedupes_after_truncation():
    assert normalize_tags(["z" * 21, "z" * 22]) == ["z" * 20]


def test_normalize_handles_none():
    assert normalize_tags(None) == []


def test_replace_swaps_whole_set(event_store, tag_index, sample_users, make_draft):
    """Test that replace drops the old set and keeps only the new one"""
    event = event_store.create_event(make_draft(tags=["Tech", "Casual"]), sample_users[0].id)

    result = tag_index.replace(event.id, ["Art", " Photography ", "Art", ""])

    assert result == ["Art", "Photography"]
    assert tag_index.for_event(event.id) == ["Art", "Photography"]


def test_replace_never_exceeds_limits(event_store, tag_index, sample_users, make_draft):
    event = event_store.create_event(make_draft(tags=[]), sample_users[0].id)

    tag_index.replace(event.id, ["Tech", "tech", "TECH", "Tech", "A" * 30, "B", "C", "D"])
    tags = tag_index.for_event(event.id)

    assert len(tags) <= MAX_TAGS
    assert len(set(tags)) == len(tags)
    assert all(len(tag) <= MAX_TAG_LENGTH for tag in tags)


def test_replace_with_empty_list_clears(event_store, tag_index, sample_users, make_draft):
    event = event_store.create_event(make_draft(), sample_users[0].id)

    tag_index.replace(event.id, [])

    assert tag_index.for_event(event.id) == []


def test_for_event_keeps_insertion_order(event_store, tag_index, sample_users, make_draft):
    event = event_store.create_event(
        make_draft(tags=["Zeta", "Alpha", "Mid"]), sample_users[0].id
    )

    assert tag_index.for_event(event.id) == ["Zeta", "Alpha", "Mid"]
    # restartable: a second read yields the same sequence
    assert tag_index.for_event(event.id) == ["Zeta", "Alpha", "Mid"]


def test_tags_of_missing_event(tag_index):
    with pytest.raises(NotFound):
        tag_index.replace("no-such-event", ["Tech"])
    with pytest.raises(NotFound):
        tag_index.for_event("no-such-event")


def test_creator_replaces_tags_through_store(event_store, tag_index, sample_users, make_draft):
    creator = sample_users[0]
    event = event_store.create_event(make_draft(tags=["Tech"]), creator.id)

    result = event_store.replace_tags(event.id, [" Music ", "Music", "Art"], creator.id)

    assert result == ["Music", "Art"]
    assert tag_index.for_event(event.id) == ["Music", "Art"]


def test_only_creator_replaces_tags(event_store, tag_index, sample_users, make_draft):
    event = event_store.create_event(make_draft(tags=["Tech"]), sample_users[0].id)

    with pytest.raises(Unauthorized):
        event_store.replace_tags(event.id, ["Hijacked"], sample_users[1].id)
    with pytest.raises(NotFound):
        event_store.replace_tags("no-such-event", ["Tech"], sample_users[0].id)

    assert tag_index.for_event(event.id) == ["Tech"]
