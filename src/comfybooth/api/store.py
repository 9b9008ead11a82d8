"""File-backed history and runtime settings storage for the ComfyBooth API.

This module isolates JSON persistence from ``comfybooth.api.main`` so route
handlers can focus on HTTP concerns while the stores remain testable as
small units.

The storage is intentionally simple:

- generation history lives in ``history.json`` as a list, newest first
- runtime settings live in ``settings.json`` as a flat string map
- every write rewrites the whole file; there are no transactions

Loading is forgiving: a missing, empty or corrupt file reads as empty
rather than raising, so a fresh data directory bootstraps itself on the
first write.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

HISTORY_FILE = "history.json"
SETTINGS_FILE = "settings.json"

HISTORY_STATUSES = ("pending", "processing", "completed", "failed")


def _load_json(path: Path, default):
    if path.exists():
        try:
            with open(path, encoding="utf-8") as handle:
                return json.load(handle)
        except Exception:
            return default
    return default


def _save_json(path: Path, data) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)


# ---------------------------------------------------------------------------
# History records.
# ---------------------------------------------------------------------------


def load_history(data_dir: Path) -> list[dict]:
    """Load every history record, newest first.

    Non-dict entries are dropped so a hand-edited file cannot break callers.

    Args:
        data_dir: Directory containing ``history.json``.

    Returns:
        List of history record dictionaries.
    """
    records = _load_json(data_dir / HISTORY_FILE, [])
    if not isinstance(records, list):
        return []
    return [record for record in records if isinstance(record, dict)]


def create_history_record(
    data_dir: Path,
    *,
    user: str | None,
    original_image: str,
    seed: int | None = None,
    status: str = "pending",
) -> dict:
    """Append a new history record and return it.

    Record ids are one greater than the largest existing id.

    Args:
        data_dir: Directory containing ``history.json``.
        user: Identity of the caller, or ``None`` for anonymous requests.
        original_image: URL of the submitted photo.
        seed: Sampler seed used for the job.
        status: Initial status, one of :data:`HISTORY_STATUSES`.

    Returns:
        The persisted record.
    """
    if status not in HISTORY_STATUSES:
        raise ValueError(f"unknown history status: {status}")

    records = load_history(data_dir)
    next_id = max((int(r.get("id", 0)) for r in records), default=0) + 1
    record = {
        "id": next_id,
        "user": user,
        "original_image": original_image,
        "result_image": "",
        "seed": seed,
        "status": status,
        "error": None,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    records.insert(0, record)
    _save_json(data_dir / HISTORY_FILE, records)
    return record


def update_history_record(data_dir: Path, record_id: int, **updates) -> dict | None:
    """Merge ``updates`` into the record with ``record_id``.

    Returns:
        The updated record, or ``None`` if no record has that id.
    """
    if "status" in updates and updates["status"] not in HISTORY_STATUSES:
        raise ValueError(f"unknown history status: {updates['status']}")

    records = load_history(data_dir)
    record = next((r for r in records if r.get("id") == record_id), None)
    if record is None:
        return None
    record.update(updates)
    _save_json(data_dir / HISTORY_FILE, records)
    return record


def list_history(data_dir: Path, user: str | None = None) -> list[dict]:
    """Return history records, optionally restricted to one user."""
    records = load_history(data_dir)
    if user is not None:
        records = [r for r in records if r.get("user") == user]
    return records


# ---------------------------------------------------------------------------
# Runtime settings.
# ---------------------------------------------------------------------------


def load_settings(data_dir: Path) -> dict[str, str]:
    """Return all runtime settings as a string map."""
    settings = _load_json(data_dir / SETTINGS_FILE, {})
    if not isinstance(settings, dict):
        return {}
    return {str(key): "" if value is None else str(value) for key, value in settings.items()}


def get_setting(data_dir: Path, key: str) -> str | None:
    """Return one runtime setting, or ``None`` if it is unset."""
    return load_settings(data_dir).get(key)


def set_setting(data_dir: Path, key: str, value: str) -> None:
    """Create or overwrite one runtime setting."""
    if not key:
        raise ValueError("setting key must not be empty")
    settings = load_settings(data_dir)
    settings[key] = value
    _save_json(data_dir / SETTINGS_FILE, settings)
