"""Tests for lock alias classes and tiers."""
import pytest

from lockguard.alias import AliasTier, alias_tier, class_key, class_label
from tests.test_utils import field_lock, heap_lock, static_lock


class TestAliasTier:
    def test_same_static_lock_is_exact(self):
        assert alias_tier(static_lock("app::L"), static_lock("app::L")) is AliasTier.EXACT

    def test_different_statics_do_not_alias(self):
        assert alias_tier(static_lock("app::A"), static_lock("app::B")) is None

    def test_field_through_same_receiver_in_one_frame_is_exact(self):
        first = field_lock("inner.lock", "self")
        second = field_lock("inner.lock", "self")
        assert alias_tier(first, second, same_frame=True) is AliasTier.EXACT

    def test_same_receiver_name_in_other_frames_is_likely(self):
        # receiver locals are function scoped, equal names say nothing on their own
        first = field_lock("left", "_1")
        second = field_lock("left", "_1")
        assert alias_tier(first, second) is AliasTier.LIKELY

    def test_field_through_other_receiver_is_likely(self):
        first = field_lock("inner.lock", "self")
        second = field_lock("inner.lock", "other")
        assert alias_tier(first, second, same_frame=True) is AliasTier.LIKELY

    def test_field_without_receiver_is_likely(self):
        first = field_lock("inner.lock", None)
        second = field_lock("inner.lock", None)
        assert alias_tier(first, second, same_frame=True) is AliasTier.LIKELY

    @pytest.mark.parametrize(
        "second",
        [
            field_lock("inner.other", "self"),
            field_lock("inner.lock", "self", receiver_type="app::Pool"),
            static_lock("inner.lock"),
        ],
    )
    def test_field_class_boundaries(self, second):
        assert alias_tier(field_lock("inner.lock", "self"), second) is None

    def test_heap_locks_of_same_type_are_unknown(self):
        assert alias_tier(heap_lock(), heap_lock()) is AliasTier.UNKNOWN

    def test_heap_locks_of_other_type_do_not_alias(self):
        assert alias_tier(heap_lock(), heap_lock("std::sync::RwLock<u32>")) is None


class TestClassLabel:
    def test_field_locks_share_a_class_across_receivers(self):
        assert class_key(field_lock("inner.lock", "self")) == class_key(
            field_lock("inner.lock", "other")
        )

    def test_labels(self):
        assert class_label(class_key(static_lock("app::L"))) == "app::L"
        assert class_label(class_key(field_lock("inner.lock", "self"))) == (
            "app::Cache.inner.lock"
        )
        assert class_label(class_key(heap_lock())) == "<heap std::sync::Mutex<u32>>"
