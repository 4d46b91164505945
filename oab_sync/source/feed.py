"""
Directory feed loader.

Reads an exported organization address book into SourceRecords. Exports
come as JSON (a list, or an object with a ``records`` list), JSON lines,
YAML, or CSV with one column per phone category:

    email,givenName,familyName,fullName,business,mobile,assistant
    jan@example.com,Jan,Jansen,"Jansen, Jan",020 123 4567,06 12345678;06 87654321,

Multiple numbers in one CSV cell are separated by ``;``.
"""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from oab_sync.sync.phone import PhoneNormalizer
from oab_sync.sync.record import (
    SourceRecord,
    SourceRecordError,
    parse_category,
    prune_assistant_numbers,
)

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".json", ".jsonl", ".yaml", ".yml", ".csv")

CSV_NUMBER_SEPARATOR = ";"


class FeedError(Exception):
    """Raised when the directory feed cannot be read."""

    pass


def _entries_from_document(document: Any, path: Path) -> list[dict[str, Any]]:
    if document is None:
        return []
    if isinstance(document, dict) and "records" in document:
        document = document["records"]
    if not isinstance(document, list):
        raise FeedError(f"{path}: expected a list of records")
    for n, entry in enumerate(document, 1):
        if not isinstance(entry, dict):
            raise FeedError(f"{path}: record {n} is not an object")
    return document


def _read_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as e:
                raise FeedError(f"{path}:{line_number}: {e}") from e
            if not isinstance(entry, dict):
                raise FeedError(f"{path}:{line_number}: record is not an object")
            yield entry


def _read_csv(path: Path) -> Iterator[dict[str, Any]]:
    with open(path, encoding="utf-8", newline="") as f:
        for row in csv.DictReader(f):
            entry: dict[str, Any] = {}
            for column, value in row.items():
                if column is None or value is None:
                    continue
                value = value.strip()
                if not value:
                    continue
                if parse_category(column) is not None:
                    entry[column] = [
                        v.strip() for v in value.split(CSV_NUMBER_SEPARATOR) if v.strip()
                    ]
                else:
                    entry[column] = value
            yield entry


def read_entries(path: Path) -> list[dict[str, Any]]:
    """
    Read raw feed entries from a file, choosing the format by suffix.

    Raises:
        FeedError: If the file cannot be read or parsed
    """
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise FeedError(
            f"Unsupported feed format {suffix!r}; "
            f"use one of {', '.join(SUPPORTED_SUFFIXES)}"
        )

    try:
        if suffix == ".jsonl":
            return list(_read_jsonl(path))
        if suffix == ".csv":
            return list(_read_csv(path))
        with open(path, encoding="utf-8") as f:
            if suffix == ".json":
                document = json.load(f)
            else:
                document = yaml.safe_load(f)
    except OSError as e:
        raise FeedError(f"Cannot read feed {path}: {e}") from e
    except (json.JSONDecodeError, yaml.YAMLError, csv.Error) as e:
        raise FeedError(f"Cannot parse feed {path}: {e}") from e

    return _entries_from_document(document, path)


def load_feed(
    path: Path | str,
    normalizer: PhoneNormalizer | None = None,
    strict: bool = False,
) -> list[SourceRecord]:
    """
    Load the directory feed into source records.

    Entries without an email are skipped with a warning (or rejected in
    strict mode). Assistant numbers duplicating someone's primary number
    are dropped.

    Args:
        path: Feed file
        normalizer: Phone normalizer for the configured region
        strict: Raise on invalid entries instead of skipping them

    Returns:
        Source records in feed order

    Raises:
        FeedError: If the feed cannot be read, or an entry is invalid in
            strict mode
    """
    path = Path(path).expanduser()
    normalizer = normalizer or PhoneNormalizer()

    records: list[SourceRecord] = []
    for n, entry in enumerate(read_entries(path), 1):
        try:
            records.append(SourceRecord.from_dict(entry, normalizer))
        except SourceRecordError as e:
            if strict:
                raise FeedError(f"{path}: record {n}: {e}") from e
            logger.warning(f"Skipping feed record {n}: {e}")

    prune_assistant_numbers(records)
    logger.info(f"Loaded {len(records)} directory records from {path}")
    return records
