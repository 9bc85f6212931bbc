"""
tests/test_blacklist.py — Advancement Blacklist Tests
======================================================
"""

from __future__ import annotations

import pytest

from rankup.database.models import BlacklistEntry
from rankup.engine.errors import StoreFailure
from rankup.services.blacklist_service import (
    add_to_blacklist,
    get_blacklist,
    get_blacklist_entry,
    is_blacklisted,
    remove_from_blacklist,
)


class TestBlacklist:

    def test_add_then_check(self, db_engine):
        record, created = add_to_blacklist(db_engine, 7, reason="farming", issued_by=1)
        assert created is True
        assert record.reason == "farming"
        assert is_blacklisted(db_engine, 7) is True
        assert is_blacklisted(db_engine, 8) is False

    def test_re_adding_updates_reason(self, db_engine):
        add_to_blacklist(db_engine, 7, reason="farming", issued_by=1)
        record, created = add_to_blacklist(db_engine, 7, reason="alt account", issued_by=2)
        assert created is False
        assert (record.reason, record.issued_by) == ("alt account", 2)
        assert len(get_blacklist(db_engine)) == 1

    def test_remove(self, db_engine):
        add_to_blacklist(db_engine, 7, reason="farming", issued_by=1)
        assert remove_from_blacklist(db_engine, 7) is True
        assert remove_from_blacklist(db_engine, 7) is False
        assert get_blacklist_entry(db_engine, 7) is None

    def test_listing_is_newest_first(self, db_engine):
        for member_id in (1, 2, 3):
            add_to_blacklist(db_engine, member_id, reason=f"r{member_id}", issued_by=None)
        assert [r.member_id for r in get_blacklist(db_engine)] == [3, 2, 1]

    def test_database_error_becomes_store_failure(self, db_engine):
        BlacklistEntry.__table__.drop(db_engine)
        with pytest.raises(StoreFailure) as exc_info:
            is_blacklisted(db_engine, 7)
        assert exc_info.value.operation == "is_blacklisted"
        assert exc_info.value.member_id == 7
