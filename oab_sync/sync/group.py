"""
Contact groups and group role resolution.

Reconciliation cares about four groups: the work group every directory
person belongs to, an optional friends group, and the starred and
"My Contacts" system groups. Their names are configured; this module
resolves them against the account's group directory once per run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from oab_sync.config.loader import ConfigError
from oab_sync.config.sync_config import GroupNames
from oab_sync.utils import normalize_string

logger = logging.getLogger(__name__)

# Group types as defined by Google People API
GROUP_TYPE_UNSPECIFIED = "GROUP_TYPE_UNSPECIFIED"
GROUP_TYPE_USER_CONTACT_GROUP = "USER_CONTACT_GROUP"
GROUP_TYPE_SYSTEM_CONTACT_GROUP = "SYSTEM_CONTACT_GROUP"

GROUP_RESOURCE_PREFIX = "contactGroups/"


class MissingGroupError(ConfigError):
    """Raised when a configured group does not exist in the account."""

    pass


@dataclass
class ContactGroup:
    """
    A contact group of the account.

    Attributes:
        resource_name: Google's unique ID (e.g., "contactGroups/123abc")
        name: Group name ("myContacts" for system groups)
        formatted_name: Localized display name ("My Contacts")
        group_type: USER_CONTACT_GROUP or SYSTEM_CONTACT_GROUP
        member_count: Number of members, when returned by the API
    """

    resource_name: str
    name: str
    formatted_name: str | None = None
    group_type: str = GROUP_TYPE_UNSPECIFIED
    member_count: int = 0

    @classmethod
    def from_api_response(cls, group_data: dict[str, Any]) -> ContactGroup:
        """
        Create a ContactGroup from a People API contactGroups resource.

        Example API response structure::

            {
                'resourceName': 'contactGroups/123abc',
                'etag': 'xyz789',
                'name': 'Coworkers',
                'formattedName': 'Coworkers',
                'groupType': 'USER_CONTACT_GROUP',
                'memberCount': 5
            }
        """
        return cls(
            resource_name=group_data.get("resourceName", ""),
            name=group_data.get("name", ""),
            formatted_name=group_data.get("formattedName"),
            group_type=group_data.get("groupType", GROUP_TYPE_UNSPECIFIED),
            member_count=group_data.get("memberCount", 0),
        )

    def is_system_group(self) -> bool:
        return self.group_type == GROUP_TYPE_SYSTEM_CONTACT_GROUP

    @property
    def display_name(self) -> str:
        return self.formatted_name or self.name


@dataclass(frozen=True)
class GroupRoles:
    """Resolved resource names of the groups with a reconciliation role."""

    work: str
    starred: str
    my_contacts: str
    friends: str | None = None


class GroupDirectory:
    """
    Lookup of the account's contact groups by resource name or name.

    Usage:
        directory = GroupDirectory.from_api_response(api.list_contact_groups())
        roles = directory.resolve(config.groups)
    """

    def __init__(self, groups: Iterable[ContactGroup]):
        self.groups = list(groups)
        self._by_resource = {g.resource_name: g for g in self.groups}
        self._by_key: dict[str, ContactGroup] = {}
        for group in self.groups:
            for name in (group.name, group.formatted_name):
                if not name:
                    continue
                key = normalize_string(name, strip_punctuation=False, remove_spaces=False)
                self._by_key.setdefault(key, group)

    @classmethod
    def from_api_response(cls, groups_data: Iterable[dict[str, Any]]) -> GroupDirectory:
        return cls(ContactGroup.from_api_response(data) for data in groups_data)

    def __len__(self) -> int:
        return len(self.groups)

    def find(self, reference: str) -> ContactGroup | None:
        """
        Find a group by resource name, bare id or display name.

        Args:
            reference: "contactGroups/abc", "abc", "Coworkers" or "My Contacts"

        Returns:
            The matching group, or None
        """
        reference = reference.strip()
        if reference in self._by_resource:
            return self._by_resource[reference]

        prefixed = f"{GROUP_RESOURCE_PREFIX}{reference}"
        if prefixed in self._by_resource:
            return self._by_resource[prefixed]

        key = normalize_string(reference, strip_punctuation=False, remove_spaces=False)
        return self._by_key.get(key)

    def _require(self, role: str, reference: str | None) -> str:
        if not reference:
            raise MissingGroupError(f"No {role} group configured")
        group = self.find(reference)
        if group is None:
            raise MissingGroupError(
                f"{role.capitalize()} group {reference!r} not found in the account"
            )
        logger.debug(f"Resolved {role} group {reference!r} to {group.resource_name}")
        return group.resource_name

    def resolve(self, names: GroupNames) -> GroupRoles:
        """
        Resolve configured group names to resource names.

        Raises:
            MissingGroupError: If the work, starred or my-contacts group is
                missing, or a configured friends group does not exist
        """
        friends = None
        if names.friends:
            friends = self._require("friends", names.friends)

        return GroupRoles(
            work=self._require("work", names.work),
            starred=self._require("starred", names.starred),
            my_contacts=self._require("my contacts", names.my_contacts),
            friends=friends,
        )
