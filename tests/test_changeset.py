"""
Tests for the change set emitter.

Tests the mapping from entry statuses to operations, correlation ids,
stripping, batching and the action filter.
"""

import pytest

from oab_sync.sync.changeset import (
    DEFAULT_BATCH_LIMIT,
    Action,
    ChangeSet,
    ChangeSetEmitter,
    ChangeSummary,
    Operation,
)
from oab_sync.sync.entry import DestinationEntry, EmailAddress, PhoneNumber
from oab_sync.sync.group import GroupRoles
from oab_sync.sync.status import Status

ROLES = GroupRoles(
    work="contactGroups/work",
    starred="contactGroups/starred",
    my_contacts="contactGroups/myContacts",
)


def _entry(identity, status, *emails, phones=(), groups=()):
    entry = DestinationEntry(
        identity=identity,
        concurrency_token=f"etag-{identity}" if identity else None,
        emails=[EmailAddress(address, "work") for address in emails],
        phones=[PhoneNumber(value, label) for value, label in phones],
        groups=list(groups),
    )
    entry.status = status
    return entry


def _emitter(organization=None):
    return ChangeSetEmitter("x.com", ROLES, organization)


class TestEmit:
    """Tests for ChangeSetEmitter.emit."""

    def test_statuses_map_to_actions(self):
        """Test every status once."""
        entries = [
            _entry(None, Status.NEW, "new@x.com"),
            _entry("people/c1", Status.UPDATE, "upd@x.com"),
            _entry("people/c2", Status.DELETE, "del@x.com"),
            _entry("people/c3", Status.KEEP, "keep@x.com"),
            _entry("people/c4", Status.UNSET, "private@gmail.com"),
        ]

        change_set = _emitter().emit(entries)

        assert [(op.action, op.email) for op in change_set.operations] == [
            (Action.INSERT, "new@x.com"),
            (Action.UPDATE, "upd@x.com"),
            (Action.DELETE, "del@x.com"),
        ]
        assert change_set.summary == ChangeSummary(
            inserted=1, updated=1, deleted=1, kept=1
        )
        assert change_set.summary.total == 3

    def test_delete_carries_target_and_token(self):
        """Test the fields of a delete."""
        change_set = _emitter().emit([_entry("people/c2", Status.DELETE, "del@x.com")])

        operation = change_set.operations[0]
        assert operation.target == "people/c2"
        assert operation.concurrency_token == "etag-people/c2"
        assert operation.payload is None

    def test_delete_of_uncreated_entry_is_dropped(self):
        """Test that an entry without identity cannot be deleted."""
        change_set = _emitter().emit([_entry(None, Status.DELETE, "del@x.com")])
        assert change_set.is_empty()

    def test_correlation_ids_are_unique(self):
        """Test the suffix for repeated action and email pairs."""
        entries = [
            _entry("people/c1", Status.DELETE, "dup@x.com"),
            _entry("people/c2", Status.DELETE, "dup@x.com"),
            _entry("people/c3", Status.DELETE, "dup@x.com"),
        ]

        change_set = _emitter().emit(entries)

        assert [op.correlation_id for op in change_set.operations] == [
            "delete-dup@x.com",
            "delete-dup@x.com#2",
            "delete-dup@x.com#3",
        ]

    def test_update_schedules_photo(self):
        """Test that a pending photo rides along with an update."""
        entry = _entry("people/c1", Status.UPDATE, "upd@x.com")
        entry.photo_pending = True

        change_set = _emitter().emit([entry])

        assert change_set.operations[0].photo
        assert change_set.photo_uploads == []
        assert change_set.summary.photo_updates == 1

    def test_keep_with_photo_becomes_upload(self):
        """Test a photo upload for an entry that needs no other write."""
        entry = _entry("people/c3", Status.KEEP, "keep@x.com")
        entry.photo_pending = True

        change_set = _emitter().emit([entry])

        assert len(change_set) == 0
        assert not change_set.is_empty()
        upload = change_set.photo_uploads[0]
        assert upload.target == "people/c3"
        assert upload.correlation_id == "photo-keep@x.com"

    def test_payload_excludes_photos(self):
        """Test that photos are written by upload only."""
        entry = _entry("people/c1", Status.UPDATE, "upd@x.com")
        entry.photos = [{"url": "https://example.com/p.jpg"}]

        change_set = _emitter().emit([entry])

        assert "photos" not in change_set.operations[0].payload


class TestStrip:
    """Tests for stripping managed fields."""

    def test_strip_removes_managed_fields(self):
        """Test that private data survives a strip."""
        entry = _entry(
            "people/c1",
            Status.STRIP,
            "a@x.com",
            "a@home.nl",
            phones=[("+31 6 12345678", "Work mobile"), ("+31 10 111 1111", "home")],
            groups=["contactGroups/work", "contactGroups/family"],
        )
        entry.organizations = [{"name": "Example Corp"}, {"name": "Choir"}]

        stripped = _emitter("Example Corp").strip(entry)

        assert [e.address for e in stripped.emails] == ["a@home.nl"]
        assert [p.label for p in stripped.phones] == ["home"]
        assert stripped.groups == ["contactGroups/family"]
        assert stripped.organizations == [{"name": "Choir"}]
        assert len(entry.emails) == 2

    def test_strip_update(self):
        """Test that a strip is sent as an update."""
        entry = _entry("people/c1", Status.STRIP, "a@x.com", "a@home.nl")

        change_set = _emitter().emit([entry])

        operation = change_set.operations[0]
        assert operation.action is Action.UPDATE
        assert operation.stripped
        assert operation.payload["emailAddresses"] == [
            {"value": "a@home.nl", "type": "work"}
        ]
        assert change_set.summary.stripped == 1
        assert change_set.summary.updated == 1

    def test_strip_of_empty_entry_deletes(self):
        """Test that nothing left after stripping means a delete."""
        entry = _entry(
            "people/c1", Status.STRIP, "a@x.com", phones=[("+31 6 12345678", "Work")]
        )

        change_set = _emitter().emit([entry])

        operation = change_set.operations[0]
        assert operation.action is Action.DELETE
        assert operation.stripped
        assert change_set.summary.deleted == 1
        assert change_set.summary.stripped == 1


class TestChangeSet:
    """Tests for ChangeSet helpers."""

    def _change_set(self, count):
        operations = [
            Operation(Action.DELETE, f"delete-{n}@x.com", f"{n}@x.com", f"people/c{n}")
            for n in range(count)
        ]
        return ChangeSet(operations=operations)

    def test_batches(self):
        """Test splitting into batches of at most the limit."""
        change_set = self._change_set(250)
        assert [len(batch) for batch in change_set.batches()] == [100, 100, 50]
        assert [len(batch) for batch in change_set.batches(120 // 2)] == [60] * 4 + [10]

    @pytest.mark.parametrize("size", [0, DEFAULT_BATCH_LIMIT + 1])
    def test_invalid_batch_size(self, size):
        """Test that the batch size is bounded."""
        with pytest.raises(ValueError, match="Batch size must be between"):
            self._change_set(3).batches(size)

    def test_filter(self):
        """Test restricting a change set to one action."""
        entries = [
            _entry(None, Status.NEW, "new@x.com"),
            _entry("people/c2", Status.DELETE, "del@x.com"),
            _entry("people/c3", Status.KEEP, "keep@x.com"),
        ]
        entries[2].photo_pending = True
        change_set = _emitter().emit(entries)

        deletes = change_set.filter(Action.DELETE)

        assert [op.email for op in deletes.operations] == ["del@x.com"]
        assert deletes.photo_uploads == []
        assert deletes.summary.deleted == 1
        assert deletes.summary.inserted == 0
        assert change_set.filter(None) is change_set

    def test_to_list(self):
        """Test the serialized operation list."""
        change_set = _emitter().emit([_entry("people/c2", Status.DELETE, "del@x.com")])
        assert change_set.to_list() == [
            {
                "operation": "delete",
                "correlationId": "delete-del@x.com",
                "targetIdentity": "people/c2",
                "concurrencyToken": "etag-people/c2",
            }
        ]

    def test_summary_to_dict(self):
        """Test the summary counters."""
        assert ChangeSummary(inserted=2, photo_updates=1).to_dict() == {
            "inserted": 2,
            "updated": 0,
            "deleted": 0,
            "kept": 0,
            "stripped": 0,
            "photoUpdates": 1,
        }
