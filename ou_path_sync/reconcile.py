"""
OU path derivation and reconciliation for OU Path Sync.

This module holds the pure parts of the job: turning an object's canonical name into
its parent container path, deciding whether the stored attribute needs an Add or an
Update, and the record and counter types the orchestrator threads through a run.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ou_path_sync.config import DEFAULT_MAX_PATH_LENGTH

logger = logging.getLogger(__name__)

ACTION_ADD = 'Add'
ACTION_UPDATE = 'Update'
ACTION_MISSING_CANONICAL_NAME = 'Missing CanonicalName'

OUTCOME_SUCCESSFUL = 'Successful'
OUTCOME_FAILED = 'Failed'
OUTCOME_WHATIF = 'WhatIf'
OUTCOME_SKIPPED = 'Skipped'

NOT_AVAILABLE = 'N/A'

# Last '/' not preceded by the canonicalName escape character
_LAST_UNESCAPED_SLASH = re.compile(r'(?<!\\)/(?!.*(?<!\\)/)')


@dataclass
class DirectoryObject:
    """Snapshot of a mail-enabled directory entry as read from a domain controller."""

    dn: str
    name: str
    canonical_name: Optional[str] = None
    display_name: Optional[str] = None
    mail: Optional[str] = None
    object_class: Optional[str] = None
    when_created: Optional[str] = None
    when_changed: Optional[str] = None
    stored_value: Optional[str] = None
    recipient_type_details: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.name or self.dn


@dataclass
class ReconciliationRecord:
    """One exported row describing what happened to an object."""

    display_name: str
    action: str
    outcome: str
    new_value: str
    previous_value: str
    email: str
    object_class: str
    when_changed: str
    when_created: str
    domain: str

    def as_row(self) -> Dict[str, str]:
        return {
            'DisplayName': self.display_name,
            'Action': self.action,
            'Updated': self.outcome,
            'NewEntry': self.new_value,
            'ExistingEntry': self.previous_value,
            'EmailAddress': self.email,
            'ObjectClass': self.object_class,
            'WhenChanged': self.when_changed,
            'WhenCreated': self.when_created,
            'Domain': self.domain,
        }


@dataclass
class DomainSummary:
    """Counters for a single domain."""

    domain: str
    objects_seen: int = 0
    adds: int = 0
    updates: int = 0
    failures: int = 0
    skipped: int = 0
    error: Optional[str] = None
    records: List[ReconciliationRecord] = field(default_factory=list)


@dataclass
class RunSummary:
    """Counters for the whole run, built by merging domain summaries."""

    dry_run: bool = False
    domains_processed: int = 0
    domains_failed: int = 0
    objects_seen: int = 0
    adds: int = 0
    updates: int = 0
    failures: int = 0
    skipped: int = 0
    domain_details: Dict[str, DomainSummary] = field(default_factory=dict)
    records: List[ReconciliationRecord] = field(default_factory=list)

    def merge(self, summary: DomainSummary) -> None:
        if summary.error:
            self.domains_failed += 1
        else:
            self.domains_processed += 1
        self.objects_seen += summary.objects_seen
        self.adds += summary.adds
        self.updates += summary.updates
        self.failures += summary.failures
        self.skipped += summary.skipped
        self.domain_details[summary.domain] = summary
        self.records.extend(summary.records)


def escape_leaf_name(name: str) -> str:
    """Escape '/' in a leaf name the way canonicalName does ('\\/')."""
    return name.replace('/', '\\/')


def derive_parent_path(canonical_name: str, leaf_name: str,
                       truncate: bool = False,
                       max_length: int = DEFAULT_MAX_PATH_LENGTH) -> str:
    """
    Derive the parent container path of an object.

    The escaped leaf name is removed from the end of the canonical name, leaving the
    trailing separator in place, e.g. ``Contoso/Sales/Jane Doe`` -> ``Contoso/Sales/``.

    Args:
        canonical_name: Object canonicalName
        leaf_name: Object name (RDN value), unescaped
        truncate: Cut the result to max_length characters
        max_length: Longest value the downstream attribute accepts

    Returns:
        Parent path
    """
    escaped_leaf = escape_leaf_name(leaf_name or '')

    if escaped_leaf and canonical_name.endswith(escaped_leaf):
        parent_path = canonical_name[:-len(escaped_leaf)]
    else:
        match = _LAST_UNESCAPED_SLASH.search(canonical_name)
        parent_path = canonical_name[:match.end()] if match else canonical_name
        logger.debug(f"Leaf '{escaped_leaf}' not at end of '{canonical_name}', split at last separator")

    if truncate and len(parent_path) > max_length:
        logger.debug(f"Truncating path of {len(parent_path)} characters to {max_length}")
        parent_path = parent_path[:max_length]

    return parent_path


def paths_match(stored_value: Optional[str], derived_path: str) -> bool:
    """Case-insensitive comparison of a stored attribute and a derived path."""
    if stored_value is None:
        return False
    return stored_value.casefold() == derived_path.casefold()


def classify(stored_value: Optional[str], derived_path: str) -> Optional[str]:
    """
    Decide what to do with an object's stored attribute.

    Returns:
        ACTION_ADD when nothing is stored, ACTION_UPDATE when the stored value
        differs, None when it already matches
    """
    if not stored_value:
        return ACTION_ADD
    if not paths_match(stored_value, derived_path):
        return ACTION_UPDATE
    return None


def build_record(obj: DirectoryObject, domain: str, action: str, outcome: str,
                 new_value: Optional[str], previous_value: Optional[str]) -> ReconciliationRecord:
    """Build an export record for an object."""
    return ReconciliationRecord(
        display_name=obj.display_name or obj.name or '',
        action=action,
        outcome=outcome,
        new_value=new_value if new_value is not None else '',
        previous_value=previous_value if previous_value is not None else '',
        email=obj.mail or '',
        object_class=obj.object_class or '',
        when_changed=obj.when_changed or '',
        when_created=obj.when_created or '',
        domain=domain,
    )
