from models.audit import AuditLog, AuditAction
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

# List keys whose entries are identified by a name attribute
NAMED_LISTS = {"customFields": "fieldName", "variants": "variantName"}


def _entries_by_name(entries: Any, name_key: str) -> Dict[str, Any]:
    if not isinstance(entries, list):
        return {}
    return {e.get(name_key): e for e in entries if isinstance(e, dict) and e.get(name_key)}


def _strip_ids(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if k != "_id"}


def diff_named_entries(before: Any, after: Any, name_key: str) -> Dict[str, List[str]]:
    """Names added, removed or edited between two field/variant lists.

    Entries are matched by name; the identity token is ignored, since a
    wholesale replace regenerates it for entries sent without one.
    """
    old = _entries_by_name(before, name_key)
    new = _entries_by_name(after, name_key)
    diff = {
        "added": [n for n in new if n not in old],
        "removed": [n for n in old if n not in new],
        "changed": [n for n in new if n in old and _strip_ids(new[n]) != _strip_ids(old[n])],
    }
    return {k: v for k, v in diff.items() if v}


def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Differences between two configuration snapshots.

    Scalar keys map to {"from", "to"}; customFields and variants map to the
    entry names that were added, removed or changed.
    """
    if not before or not after:
        return {}

    diff = {}
    for key in sorted(set(before) | set(after)):
        before_val = before.get(key)
        after_val = after.get(key)
        if key in NAMED_LISTS:
            entries = diff_named_entries(before_val, after_val, NAMED_LISTS[key])
            if entries:
                diff[key] = entries
        elif before_val != after_val:
            diff[key] = {"from": before_val, "to": after_val}
    return diff


async def create_audit_log(
    db,
    action: AuditAction,
    actor_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    auto_diff: bool = True
) -> str:
    """Write an audit entry for a configuration change.

    Args:
        db: Database handle to write to
        action: The audit action type
        actor_id: Opaque identity of whoever made the change
        resource_type: Type of resource being modified (e.g. 'form_config')
        resource_id: ID of the specific resource
        before_state: Snapshot before the change
        after_state: Snapshot after the change
        metadata: Additional metadata
        auto_diff: If True, store the snapshot diff under metadata["diff"]

    Returns the audit id, or "" if the entry could not be written.
    """
    try:
        enriched_metadata = dict(metadata or {})
        if auto_diff:
            diff = calculate_diff(before_state, after_state)
            if diff:
                enriched_metadata["diff"] = diff
                enriched_metadata["changes_count"] = len(diff)

        audit_log = AuditLog(
            action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata or None,
        )

        await db["audit_logs"].insert_one(audit_log.model_dump(mode="json"))
        logger.info(f"Audit log created: {action.value} on {resource_type}/{resource_id}")
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Never fail the main operation due to audit log failure
        return ""
