"""Unit tests for resource keys."""

import copy
import pickle

import pytest

from cachepilot.errors import ResourceKeyError
from cachepilot.keys import ResourceKey, merge_filters


class TestResourceKey:
    """Tests for ResourceKey construction and identity."""

    def test_of(self):
        key = ResourceKey.of("exam", "detail", "e1")
        assert key.segments == ("exam", "detail", "e1")
        assert len(key) == 3
        assert list(key) == ["exam", "detail", "e1"]

    def test_serialization_is_canonical(self):
        key = ResourceKey.of("exam", "list", {"size": 20, "page": 1})
        assert key.serialize() == '["exam","list",{"page":1,"size":20}]'
        assert str(key) == key.serialize()
        assert repr(key) == f"ResourceKey({key.serialize()})"

    def test_equality_ignores_mapping_order(self):
        a = ResourceKey.of("exam", "list", {"page": 1, "size": 20})
        b = ResourceKey.of("exam", "list", {"size": 20, "page": 1})
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_segment_order_matters(self):
        assert ResourceKey.of("exam", "detail") != ResourceKey.of("detail", "exam")

    def test_not_equal_to_other_types(self):
        assert ResourceKey.of("exam") != ["exam"]
        assert ResourceKey.of("exam") != "exam"

    def test_mutating_source_does_not_change_key(self):
        filters = {"page": 0}
        key = ResourceKey.of("exam", "list", filters)
        filters["page"] = 5
        assert key.segments[-1] == {"page": 0}

    def test_segments_are_copies(self):
        key = ResourceKey.of("exam", "list", {"page": 0})
        key.segments[-1]["page"] = 9
        assert key.segments[-1] == {"page": 0}

    def test_immutable(self):
        key = ResourceKey.of("exam")
        with pytest.raises(AttributeError):
            key._serialized = "x"

    def test_family(self):
        assert ResourceKey.of("exam", "detail", "e1").family == "exam"
        assert ResourceKey.of(7, "x").family == "7"

    @pytest.mark.parametrize("segments", [[], ()])
    def test_empty_rejected(self, segments):
        with pytest.raises(ResourceKeyError):
            ResourceKey(segments)

    @pytest.mark.parametrize("segments", ["exam", b"exam", 42, None])
    def test_non_sequence_rejected(self, segments):
        with pytest.raises(ResourceKeyError):
            ResourceKey(segments)

    def test_unserializable_rejected(self):
        with pytest.raises(ResourceKeyError) as exc_info:
            ResourceKey.of("exam", object())
        assert exc_info.value.code == "KEY_INVALID"
        assert exc_info.value.cause is not None

    def test_coerce(self):
        key = ResourceKey.of("exam")
        assert ResourceKey.coerce(key) is key
        assert ResourceKey.coerce("exam") == key
        assert ResourceKey.coerce(["exam", 1]) == ResourceKey.of("exam", 1)
        assert ResourceKey.coerce(3) == ResourceKey.of(3)

    def test_child(self):
        parent = ResourceKey.of("exam", "detail")
        assert parent.child("e1") == ResourceKey.of("exam", "detail", "e1")

    def test_startswith(self):
        key = ResourceKey.of("exam", "list", {"page": 0})
        assert key.startswith(("exam",))
        assert key.startswith(ResourceKey.of("exam", "list"))
        assert key.startswith(key)
        assert not key.startswith(("exam", "detail"))
        assert not key.startswith(key.child("more"))

    def test_copy_and_pickle(self):
        key = ResourceKey.of("exam", "list", {"page": 0})
        assert copy.copy(key) is key
        assert copy.deepcopy(key) is key
        assert pickle.loads(pickle.dumps(key)) == key


class TestMergeFilters:
    """Tests for merge_filters."""

    def test_overrides(self):
        assert merge_filters({"page": 0, "size": 20}, page=1) == {"page": 1, "size": 20}

    def test_source_untouched(self):
        filters = {"page": 0}
        merge_filters(filters, page=3)
        assert filters == {"page": 0}

    def test_none(self):
        assert merge_filters(None, page=1) == {"page": 1}
