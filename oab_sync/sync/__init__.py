"""
oab_sync.sync - Reconciliation engine

Phone normalization, source records, destination entries, the contact
index, the status state machine, the reconciler and the change set.
"""
