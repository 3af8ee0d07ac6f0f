"""Local, per-repository persistence of downloaded build records.

Each repository gets one JSON snapshot below the base cache directory. A
snapshot is always rewritten as a whole: the merged document is written to a
temporary sibling file and then moved over the previous one, so readers see
either the old or the new snapshot and never a partial write.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import CacheCorruptError
from .models import BuildRecord, RepositoryIdentity

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
SNAPSHOT_FILENAME = "builds.json"


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _record_to_dict(record: BuildRecord) -> Dict[str, Any]:
    return {
        "number": record.number,
        "branch": record.branch,
        "result": record.result,
        "started_at": _format_datetime(record.started_at),
        "finished_at": _format_datetime(record.finished_at),
    }


def _record_from_dict(item: Any) -> BuildRecord:
    """Rebuild a record from its stored form, raising ``ValueError`` on bad shape."""
    if not isinstance(item, dict):
        raise ValueError("build entry is not an object")

    number = item.get("number")
    if not isinstance(number, int) or isinstance(number, bool):
        raise ValueError(f"build entry has invalid number: {number!r}")

    branch = item.get("branch")
    result = item.get("result")
    if not isinstance(branch, str) or not isinstance(result, str):
        raise ValueError(f"build {number} has invalid branch or result")

    for key in ("started_at", "finished_at"):
        if item.get(key) is not None and not isinstance(item[key], str):
            raise ValueError(f"build {number} has invalid {key}")

    return BuildRecord(
        number=number,
        branch=branch,
        result=result,
        started_at=_parse_datetime(item.get("started_at")),
        finished_at=_parse_datetime(item.get("finished_at")),
    )


def _checksum(builds: List[Dict[str, Any]]) -> str:
    encoded = json.dumps(builds, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class CacheStore:
    """Append-only build history store keyed by repository identity.

    The store is the only component that touches snapshot files. ``append`` is
    serialized by an internal lock; concurrent processes writing the same
    repository are not supported.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)
        self._write_lock = threading.Lock()

    def location_of(self, identity: RepositoryIdentity) -> Path:
        """Return the directory holding ``identity``'s snapshot (no I/O)."""
        return self._base_dir / identity.host / identity.user / identity.repo

    def _snapshot_path(self, identity: RepositoryIdentity) -> Path:
        return self.location_of(identity) / SNAPSHOT_FILENAME

    def _load(self, identity: RepositoryIdentity) -> Optional[Dict[int, BuildRecord]]:
        """Read and validate a snapshot; ``None`` when none exists.

        Raises:
            CacheCorruptError: If the file cannot be parsed, does not belong to
                ``identity``, or fails its checksum.
        """
        path = self._snapshot_path(identity)
        if not path.exists():
            return None

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise CacheCorruptError("Build cache is not readable JSON", path) from exc

        if not isinstance(document, dict):
            raise CacheCorruptError("Build cache has an unexpected shape", path)

        if document.get("format_version") != FORMAT_VERSION:
            raise CacheCorruptError(
                f"Build cache has unsupported format version {document.get('format_version')!r}",
                path,
            )

        owner = (document.get("host"), document.get("user"), document.get("repo"))
        if owner != (identity.host, identity.user, identity.repo):
            raise CacheCorruptError(f"Build cache belongs to another repository: {owner}", path)

        builds = document.get("builds")
        if not isinstance(builds, list):
            raise CacheCorruptError("Build cache is missing its build list", path)

        if document.get("checksum") != _checksum(builds):
            raise CacheCorruptError("Build cache checksum mismatch", path)

        records: Dict[int, BuildRecord] = {}
        for item in builds:
            try:
                record = _record_from_dict(item)
            except ValueError as exc:
                raise CacheCorruptError(f"Build cache holds an invalid entry: {exc}", path) from exc
            if record.number in records:
                raise CacheCorruptError(f"Build cache holds build {record.number} twice", path)
            records[record.number] = record

        return records

    def _write(self, identity: RepositoryIdentity, records: Dict[int, BuildRecord]) -> None:
        path = self._snapshot_path(identity)
        path.parent.mkdir(parents=True, exist_ok=True)

        builds = [_record_to_dict(records[number]) for number in sorted(records)]
        document = {
            "format_version": FORMAT_VERSION,
            "host": identity.host,
            "user": identity.user,
            "repo": identity.repo,
            "checksum": _checksum(builds),
            "builds": builds,
        }

        # Atomic write (temp -> fsync -> replace)
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as handle:
                handle.write(json.dumps(document, indent=1))
                handle.flush()
                os.fsync(handle.fileno())
            temp_path.replace(path)
        finally:
            temp_path.unlink(missing_ok=True)

    def high_water_mark(self, identity: RepositoryIdentity) -> Optional[int]:
        """Return the highest cached build number, or ``None`` without history."""
        records = self._load(identity)
        if not records:
            return None
        return max(records)

    def read_all(self, identity: RepositoryIdentity) -> List[BuildRecord]:
        """Return every cached record in ascending build-number order."""
        records = self._load(identity) or {}
        return [records[number] for number in sorted(records)]

    def append(self, identity: RepositoryIdentity, records: Iterable[BuildRecord]) -> int:
        """Merge ``records`` into the snapshot, the newest copy of a number winning.

        Returns:
            Number of records in the snapshot after the merge.
        """
        with self._write_lock:
            merged = self._load(identity) or {}
            added = 0
            for record in records:
                merged[record.number] = record
                added += 1

            self._write(identity, merged)

        logger.debug(
            "Appended builds to cache",
            extra={"repository": str(identity), "appended": added, "total": len(merged)},
        )
        return len(merged)

    def delete(self, identity: RepositoryIdentity) -> None:
        """Remove everything cached for ``identity``; a no-op when nothing is."""
        location = self.location_of(identity)
        with self._write_lock:
            if location.exists():
                shutil.rmtree(location)
