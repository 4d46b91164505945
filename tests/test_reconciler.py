"""
Tests for the reconciler.

Covers the end-to-end scenarios of a reconciliation pass (directory feed
plus destination snapshot in, statuses and change set out), idempotence,
the group membership policy, name and organization handling, clean mode
and mixed entries.
"""

from unittest.mock import patch

from oab_sync.config import GroupNames, MixedEntryPolicy, SyncConfig
from oab_sync.sync.changeset import Action, ChangeSetEmitter
from oab_sync.sync.entry import (
    DestinationEntry,
    EmailAddress,
    PhoneNumber,
    StructuredName,
    decode_snapshot,
)
from oab_sync.sync.group import GroupRoles
from oab_sync.sync.reconciler import Reconciler
from oab_sync.sync.record import SourceRecord
from oab_sync.sync.status import Status

WORK = "contactGroups/work"
FRIENDS = "contactGroups/friends"
STARRED = "contactGroups/starred"
MY_CONTACTS = "contactGroups/myContacts"

ROLES = GroupRoles(work=WORK, starred=STARRED, my_contacts=MY_CONTACTS, friends=FRIENDS)


def _config(**kwargs):
    return SyncConfig(domain="x.com", groups=GroupNames(work="Coworkers"), **kwargs)


def _record(email, **numbers):
    return SourceRecord.from_dict({"email": email, "numbers": numbers})


def _entry(identity, *emails, phones=(), groups=(WORK,), name=None):
    if name is None:
        name = StructuredName(full_name=emails[0])
    return DestinationEntry(
        identity=identity,
        concurrency_token=f"etag-{identity}",
        emails=[EmailAddress(address, "work") for address in emails],
        phones=[PhoneNumber(value, label) for value, label in phones],
        groups=list(groups),
        name=name,
        title=name.full_name,
    )


def _reconcile(records, entries, config=None):
    config = config or _config()
    result = Reconciler(config, ROLES).reconcile(records, entries)
    change_set = ChangeSetEmitter(config.domain, ROLES, config.organization).emit(
        result.entries
    )
    return result, change_set


class TestScenarios:
    """End-to-end scenarios of a single pass."""

    def test_new_person_is_inserted(self):
        """A directory person missing from the account becomes one insert."""
        records = [_record("a@x.com", mobile=["+31612345678"])]

        result, change_set = _reconcile(records, [])

        assert len(result.entries) == 1
        assert result.entries[0].status is Status.NEW
        assert len(change_set) == 1

        operation = change_set.operations[0]
        assert operation.action is Action.INSERT
        assert operation.correlation_id == "insert-a@x.com"
        assert operation.payload["emailAddresses"] == [
            {"value": "a@x.com", "type": "work"}
        ]
        assert operation.payload["phoneNumbers"] == [
            {"value": "+31 6 12345678", "type": "Work mobile"}
        ]
        assert operation.payload["memberships"] == [
            {"contactGroupMembership": {"contactGroupResourceName": WORK}}
        ]

    def test_person_without_numbers_is_deleted(self):
        """A pure entry whose directory record lost its numbers is deleted."""
        entry = _entry("people/c1", "a@x.com", phones=[("+31201234567", "Work")])

        result, change_set = _reconcile([_record("a@x.com")], [entry])

        assert entry.status is Status.DELETE
        assert [op.action for op in change_set.operations] == [Action.DELETE]
        assert change_set.operations[0].target == "people/c1"
        assert change_set.operations[0].concurrency_token == "etag-people/c1"

    def test_duplicate_records_are_merged_before_inserting(self):
        """Two directory records for one email produce one insert."""
        records = [
            _record("b@x.com", business=["+31101111111"]),
            _record("b@x.com", business=["+31206666666"]),
        ]

        result, change_set = _reconcile(records, [])

        assert result.records == 1
        assert len(change_set) == 1
        phones = change_set.operations[0].payload["phoneNumbers"]
        assert [p["value"] for p in phones] == ["+31 10 111 1111", "+31 20 666 6666"]
        assert {p["type"] for p in phones} == {"Work"}

    def test_duplicate_entries_collapse_into_one(self):
        """Two entries for one email leave one survivor holding both numbers."""
        first = _entry("people/c1", "c@x.com", phones=[("+31 10 111 1111", "Work")])
        second = _entry("people/c2", "c@x.com", phones=[("+31 20 666 6666", "Work")])
        record = _record("c@x.com", business=["+31101111111", "+31206666666"])

        result, change_set = _reconcile([record], [first, second])

        assert [p.value for p in first.phones] == [
            "+31 10 111 1111",
            "+31 20 666 6666",
        ]
        assert first.status is Status.UPDATE
        assert second.status is Status.DELETE
        actions = {op.target: op.action for op in change_set.operations}
        assert actions == {"people/c1": Action.UPDATE, "people/c2": Action.DELETE}

    def test_collapsed_duplicates_absent_from_directory_are_deleted(self):
        """Both duplicates go when the directory no longer lists the person."""
        first = _entry("people/c1", "c@x.com", phones=[("+31 10 111 1111", "Work")])
        second = _entry("people/c2", "c@x.com", phones=[("+31 20 666 6666", "Work")])

        _, change_set = _reconcile([], [first, second])

        assert first.status is Status.DELETE
        assert second.status is Status.DELETE
        actions = {op.target: op.action for op in change_set.operations}
        assert actions == {"people/c1": Action.DELETE, "people/c2": Action.DELETE}

    def test_collapsed_duplicates_listed_without_numbers_are_deleted(self):
        """Both duplicates go when the directory lists the person without numbers."""
        first = _entry("people/c1", "c@x.com", phones=[("+31 10 111 1111", "Work")])
        second = _entry("people/c2", "c@x.com", phones=[("+31 20 666 6666", "Work")])

        _, change_set = _reconcile([_record("c@x.com")], [first, second])

        assert first.status is Status.DELETE
        assert second.status is Status.DELETE
        assert {op.action for op in change_set.operations} == {Action.DELETE}

    def test_person_absent_from_directory_is_deleted(self):
        """A pure managed entry the feed does not list is deleted."""
        entry = _entry("people/c1", "gone@x.com", phones=[("+31201234567", "Work")])

        _reconcile([], [entry])

        assert entry.status is Status.DELETE

    def test_record_without_numbers_or_entry_is_skipped(self):
        """A record without numbers and without entry produces nothing."""
        result, change_set = _reconcile([_record("nobody@x.com")], [])

        assert result.entries == []
        assert result.skipped == ["nobody@x.com"]
        assert change_set.is_empty()

    @patch("oab_sync.sync.reconciler.logger")
    def test_record_outside_domain_is_not_inserted(self, mock_logger):
        """A directory person with an address elsewhere never gets an entry."""
        records = [
            _record("ext@other.com", business=["+31201234567"]),
            _record("a@x.com", business=["+31101111111"]),
        ]

        result, change_set = _reconcile(records, [])

        assert result.outside_domain == ["ext@other.com"]
        assert result.index.lookup("ext@other.com") is None
        assert [op.correlation_id for op in change_set.operations] == ["insert-a@x.com"]
        mock_logger.warning.assert_called_once()
        assert "ext@other.com" in mock_logger.warning.call_args[0][0]


class TestIdempotence:
    """Re-running on a converged snapshot changes nothing."""

    def test_second_pass_keeps_everything(self):
        """Apply the inserts of a first pass, then reconcile again."""
        records = [
            _record("a@x.com", mobile=["0612345678"], business=["020 1234567"]),
            _record("b@x.com", business=["+31101111111"]),
        ]
        _, first_pass = _reconcile(records, [])

        snapshot = []
        for n, operation in enumerate(first_pass.operations):
            person = dict(operation.payload)
            person["resourceName"] = f"people/c{n}"
            person["etag"] = f"etag{n}"
            snapshot.append(person)

        records = [
            _record("a@x.com", mobile=["0612345678"], business=["020 1234567"]),
            _record("b@x.com", business=["+31101111111"]),
        ]
        result, second_pass = _reconcile(records, decode_snapshot(snapshot))

        assert [e.status for e in result.entries] == [Status.KEEP, Status.KEEP]
        assert second_pass.is_empty()
        assert second_pass.summary.kept == 2

    def test_managed_phones_equal_directory_numbers(self):
        """After one pass the managed numbers match the record exactly."""
        entry = _entry(
            "people/c1",
            "a@x.com",
            phones=[
                ("06 12345678", "Work"),
                ("+31 20 999 9999", "Work"),
                ("+31 10 111 1111", "home"),
            ],
        )
        record = _record("a@x.com", mobile=["+31612345678"], business=["+31206666666"])

        _reconcile([record], [entry])

        managed = {(p.value, p.label) for p in entry.phones if p.label != "home"}
        assert managed == {("06 12345678", "Work mobile"), ("+31 20 666 6666", "Work")}
        assert ("+31 10 111 1111", "home") in {(p.value, p.label) for p in entry.phones}
        assert entry.status is Status.UPDATE


class TestPhoneMerge:
    """Tests for the phone number diff."""

    def test_unchanged_numbers_keep_entry(self):
        """Matching numbers with the right labels need no update."""
        entry = _entry("people/c1", "a@x.com", phones=[("+31 6 12345678", "Work mobile")])

        _reconcile([_record("a@x.com", mobile=["0612345678"])], [entry])

        assert entry.status is Status.KEEP

    def test_wrong_label_is_corrected(self):
        """A mobile number filed as Work is relabeled."""
        entry = _entry("people/c1", "a@x.com", phones=[("+31 6 12345678", "Work")])

        _reconcile([_record("a@x.com", mobile=["0612345678"])], [entry])

        assert entry.phones[0].label == "Work mobile"
        assert entry.status is Status.UPDATE

    def test_user_labeled_number_survives_directory_changes(self):
        """A number under a user label outlives the directory's copy of it."""
        entry = _entry("people/c1", "a@x.com", phones=[("+31 20 123 4567", "home")])

        _reconcile([_record("a@x.com", business=["0201234567"])], [entry])

        assert entry.phones == [
            PhoneNumber("+31 20 123 4567", "home"),
            PhoneNumber("+31 20 123 4567", "Work"),
        ]
        assert entry.status is Status.UPDATE

        entry.status = Status.UNSET
        _reconcile([_record("a@x.com", mobile=["0611111111"])], [entry])

        assert entry.phones == [
            PhoneNumber("+31 20 123 4567", "home"),
            PhoneNumber("+31 6 11111111", "Work mobile"),
        ]

    def test_unmanaged_numbers_survive(self):
        """Numbers under labels this tool does not own are left alone."""
        entry = _entry(
            "people/c1",
            "a@x.com",
            phones=[("+31 6 12345678", "Work mobile"), ("+31 10 111 1111", "home")],
        )

        _reconcile([_record("a@x.com", mobile=["0612345678"])], [entry])

        assert PhoneNumber("+31 10 111 1111", "home") in entry.phones
        assert entry.status is Status.KEEP

    def test_assistant_numbers(self):
        """Assistant numbers get the Assistant label."""
        records = [_record("a@x.com", assistant=["0201234567"])]

        result, _ = _reconcile(records, [])

        assert result.entries[0].phones == [PhoneNumber("+31 20 123 4567", "Assistant")]

    def test_assistant_number_of_colleague_is_pruned(self):
        """An assistant number that is a colleague's number is not written."""
        records = [
            _record("boss@x.com", business=["0201234567"], assistant=["0101111111"]),
            _record("pa@x.com", business=["0101111111"]),
        ]

        result, _ = _reconcile(records, [])

        boss = result.index.lookup("boss@x.com")
        assert [p.value for p in boss.phones] == ["+31 20 123 4567"]


class TestGroupPolicy:
    """Tests for the group membership policy."""

    def _groups_after(self, groups):
        entry = _entry(
            "people/c1",
            "a@x.com",
            phones=[("+31 6 12345678", "Work mobile")],
            groups=groups,
        )
        _reconcile([_record("a@x.com", mobile=["0612345678"])], [entry])
        return entry

    def test_entry_without_groups_gets_work_group(self):
        """An entry in no group ends up with exactly the work membership."""
        entry = self._groups_after(())
        assert entry.groups == [WORK]
        assert entry.status is Status.UPDATE

    def test_personal_groups_are_removed(self):
        """Directory people are neither starred nor in My Contacts."""
        entry = self._groups_after((WORK, STARRED, MY_CONTACTS))
        assert entry.groups == [WORK]
        assert entry.status is Status.UPDATE

    def test_my_contacts_replaced_by_work(self):
        """An entry only in My Contacts moves to the work group."""
        entry = self._groups_after((MY_CONTACTS,))
        assert entry.groups == [WORK]

    def test_friends_replace_work(self):
        """Friends leave the work group."""
        entry = self._groups_after((WORK, FRIENDS))
        assert entry.groups == [FRIENDS]
        assert entry.status is Status.UPDATE

    def test_friends_keep_personal_groups(self):
        """A friend may stay starred."""
        entry = self._groups_after((FRIENDS, STARRED))
        assert entry.groups == [FRIENDS, STARRED]
        assert entry.status is Status.KEEP

    def test_other_groups_are_untouched(self):
        """User groups without a role are kept."""
        entry = self._groups_after((WORK, "contactGroups/book-club"))
        assert entry.groups == [WORK, "contactGroups/book-club"]
        assert entry.status is Status.KEEP


class TestNameAndOrganization:
    """Tests for the name and organization merge."""

    def test_name_written_for_nameless_entry(self):
        """A directory name in "Surname, Given" form is reordered."""
        record = SourceRecord.from_dict(
            {
                "email": "a@x.com",
                "givenName": "Jan",
                "familyName": "Jansen",
                "fullName": "Jansen, Jan",
                "numbers": {"mobile": ["0612345678"]},
            }
        )

        result, change_set = _reconcile([record], [])

        entry = result.entries[0]
        assert entry.name == StructuredName("Jan", "Jansen", "Jan Jansen")
        assert entry.title == "Jan Jansen"
        assert change_set.operations[0].payload["fileAses"] == [{"value": "Jan Jansen"}]

    def test_existing_name_is_kept(self):
        """A name the user already has is not overwritten."""
        name = StructuredName("Jantje", None, "Jantje")
        entry = _entry(
            "people/c1", "a@x.com", phones=[("+31 6 12345678", "Work mobile")], name=name
        )
        record = SourceRecord.from_dict(
            {"email": "a@x.com", "fullName": "Jansen, Jan", "mobile": "0612345678"}
        )

        _reconcile([record], [entry])

        assert entry.name.full_name == "Jantje"
        assert entry.status is Status.KEEP

    def test_force_rewrites_name(self):
        """With force the directory name replaces the user's name."""
        name = StructuredName("Jantje", None, "Jantje", attrs={"phoneticGivenName": "j"})
        entry = _entry(
            "people/c1", "a@x.com", phones=[("+31 6 12345678", "Work mobile")], name=name
        )
        record = SourceRecord.from_dict(
            {
                "email": "a@x.com",
                "givenName": "Jan",
                "familyName": "Jansen",
                "fullName": "Jansen Jan",
                "mobile": "0612345678",
            }
        )

        _reconcile([record], [entry], _config(force=True))

        assert entry.name.full_name == "Jan Jansen"
        assert entry.name.attrs == {"phoneticGivenName": "j"}
        assert entry.status is Status.UPDATE

    def test_organization_is_added_once(self):
        """The configured organization is prepended when missing."""
        entry = _entry("people/c1", "a@x.com", phones=[("+31 6 12345678", "Work mobile")])
        entry.organizations = [{"name": "Side Project"}]
        config = _config(organization="Example Corp")

        _reconcile([_record("a@x.com", mobile=["0612345678"])], [entry], config)

        assert entry.organizations == [
            {"name": "Example Corp", "type": "work"},
            {"name": "Side Project"},
        ]
        assert entry.status is Status.UPDATE

        entry.status = Status.UNSET
        _reconcile([_record("a@x.com", mobile=["0612345678"])], [entry], config)
        assert len(entry.organizations) == 2
        assert entry.status is Status.KEEP


class TestPhotoScheduling:
    """Tests for photo upload scheduling."""

    def test_photo_scheduled_for_entry_without_photo(self):
        """An existing entry with only a placeholder gets the photo."""
        entry = _entry("people/c1", "a@x.com", phones=[("+31 6 12345678", "Work mobile")])
        entry.photos = [{"url": "https://example.com/default.jpg", "default": True}]

        _, change_set = _reconcile(
            [_record("a@x.com", mobile=["0612345678"])], [entry], _config(photo="logo.png")
        )

        assert entry.photo_pending
        assert [u.target for u in change_set.photo_uploads] == ["people/c1"]
        assert change_set.summary.photo_updates == 1

    def test_custom_photo_is_respected(self):
        """A photo the user set is only replaced with force_photo."""
        entry = _entry("people/c1", "a@x.com", phones=[("+31 6 12345678", "Work mobile")])
        entry.photos = [{"url": "https://example.com/me.jpg"}]
        records = [_record("a@x.com", mobile=["0612345678"])]

        _reconcile(records, [entry], _config(photo="logo.png"))
        assert not entry.photo_pending

        entry.status = Status.UNSET
        _reconcile(records, [entry], _config(photo="logo.png", force_photo=True))
        assert entry.photo_pending

    def test_new_entries_get_no_photo(self):
        """Entries without identity cannot receive a photo yet."""
        result, change_set = _reconcile(
            [_record("a@x.com", mobile=["0612345678"])], [], _config(photo="logo.png")
        )

        assert not result.entries[0].photo_pending
        assert change_set.summary.photo_updates == 0


class TestMixedEntries:
    """Tests for managed entries that also hold other email addresses."""

    def test_mixed_entry_absent_from_directory_is_stripped(self):
        """A mixed entry the directory dropped loses only its managed fields."""
        entry = _entry(
            "people/c1",
            "a@x.com",
            "a@home.nl",
            phones=[("+31 6 12345678", "Work mobile"), ("+31 10 111 1111", "home")],
            groups=(WORK, "contactGroups/book-club"),
        )

        _, change_set = _reconcile([], [entry])

        assert entry.status is Status.STRIP
        operation = change_set.operations[0]
        assert operation.action is Action.UPDATE
        assert operation.stripped
        assert operation.payload["emailAddresses"] == [
            {"value": "a@home.nl", "type": "work"}
        ]
        assert operation.payload["phoneNumbers"] == [
            {"value": "+31 10 111 1111", "type": "home"}
        ]
        assert operation.payload["memberships"] == [
            {"contactGroupMembership": {"contactGroupResourceName": "contactGroups/book-club"}}
        ]
        assert change_set.summary.stripped == 1

    def test_mixed_entry_listed_without_numbers_is_stripped(self):
        """A mixed entry whose record has no numbers is stripped, not deleted."""
        entry = _entry("people/c1", "a@x.com", "a@home.nl")

        _reconcile([_record("a@x.com")], [entry])

        assert entry.status is Status.STRIP

    def test_mixed_entry_in_directory_is_kept(self):
        """A mixed entry the directory still lists is confirmed."""
        entry = _entry(
            "people/c1", "a@x.com", "a@home.nl", phones=[("+31 6 12345678", "Work mobile")]
        )

        _reconcile([_record("a@x.com", mobile=["0612345678"])], [entry])

        assert entry.status is Status.KEEP

    def test_delete_policy(self):
        """Under the delete policy a dropped mixed entry is deleted."""
        entry = _entry("people/c1", "a@x.com", "a@home.nl")

        _, change_set = _reconcile(
            [], [entry], _config(mixed_entries=MixedEntryPolicy.DELETE)
        )

        assert entry.status is Status.DELETE
        assert change_set.operations[0].action is Action.DELETE

    def test_merged_mixed_entry_is_updated(self):
        """A mixed entry that absorbed a duplicate is written back."""
        first = _entry(
            "people/c1", "a@x.com", "a@home.nl", phones=[("+31 6 12345678", "Work mobile")]
        )
        second = _entry("people/c2", "a@x.com", phones=[("+31 20 123 4567", "Work")])

        _reconcile(
            [_record("a@x.com", mobile=["0612345678"], business=["0201234567"])],
            [first, second],
        )

        assert first.status is Status.UPDATE
        assert second.status is Status.DELETE


class TestCleanMode:
    """Tests for clean mode."""

    def test_clean_removes_managed_entries(self):
        """Clean mode deletes pure entries and strips mixed ones."""
        pure = _entry("people/c1", "a@x.com", phones=[("+31 6 12345678", "Work mobile")])
        mixed = _entry("people/c2", "b@x.com", "b@home.nl")
        private = _entry("people/c3", "c@gmail.com")
        records = [
            _record("a@x.com", mobile=["0612345678"]),
            _record("new@x.com", mobile=["0687654321"]),
        ]

        result, change_set = _reconcile(records, [pure, mixed, private], _config(clean=True))

        assert pure.status is Status.DELETE
        assert mixed.status is Status.STRIP
        assert private.status is Status.UNSET
        assert result.index.lookup("new@x.com") is None
        assert change_set.summary.inserted == 0
        assert change_set.summary.deleted == 1
