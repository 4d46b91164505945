"""
oab_sync - Reconcile an organization address book with Google Contacts.

Reads an exported directory feed, compares it against the contacts of a
Google account and emits the minimal insert/update/delete operations that
bring the account in line with the directory.
"""

__version__ = "0.1.0"
