"""Append-only audit trail for ledger and price changes."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from . import data_manager, log
from .core_logic import (
    AUDIT_LOG,
    RuntimeContext,
    cache_bucket,
    commit_record,
    generate_id,
    resolve_timestamp,
)

KEY_SEPARATOR = "|"


def _plain(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(getattr(value, "value", value))


def entity_key(*parts: Any) -> str:
    """Join key parts as ``"a|b|c"``; dates render as ``YYYY-MM-DD``."""

    return KEY_SEPARATOR.join(_plain(part) for part in parts)


def _ensure_audit_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = cache_bucket(context, AUDIT_LOG)
    if "all" not in bucket:
        rows = list(data_manager.iter_audit_entries(context.workbook))
        # reversed first so equal timestamps keep newest-inserted on top
        newest_first = sorted(reversed(rows), key=lambda row: row.timestamp, reverse=True)
        by_key: Dict[tuple, List[data_manager.AuditRow]] = {}
        for row in newest_first:
            by_key.setdefault((row.entity_type, row.entity_key), []).append(row)
        bucket["all"] = newest_first
        bucket["by_key"] = by_key
        log.debug("Populated audit cache with %d entries", len(rows))
    return bucket


def record_change(
    context: RuntimeContext,
    action: str,
    entity_type: str,
    key: str,
    diff: Mapping[str, Any],
    *,
    user_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.AuditRow:
    """Append an audit entry.

    ``user_id`` defaults to ``[Defaults] DefaultUser`` from the configuration.
    """

    timestamp = resolve_timestamp(when)
    entry = data_manager.AuditRow(
        audit_id=generate_id("A", when=timestamp),
        timestamp=timestamp,
        user_id=user_id or context.settings.default_user,
        action=_plain(action),
        entity_type=_plain(entity_type),
        entity_key=key,
        diff=dict(diff),
    )
    commit_record(context, entry, bucket=AUDIT_LOG, key=entry.audit_id, action="create")
    log.info("Audit %s on %s '%s' by %s", entry.action, entry.entity_type, key, entry.user_id)
    return entry


def history_for(context: RuntimeContext, entity_type: str, key: str) -> List[data_manager.AuditRow]:
    """Return audit entries for one entity, newest first."""

    entity_type = _plain(entity_type)
    return list(_ensure_audit_cache(context)["by_key"].get((entity_type, key), []))


def list_entries(context: RuntimeContext) -> List[data_manager.AuditRow]:
    return list(_ensure_audit_cache(context)["all"])
