# SPDX-License-Identifier: Apache-2.0

"""
Incident domain logic for the open -> investigating -> resolved workflow.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Optional, Iterable

from ..models.entities import Incident, UserContext
from ..models.enums import IncidentStatus, IncidentType, IncidentPriority


INCIDENT_TRANSITIONS = {
    IncidentStatus.OPEN.value: {IncidentStatus.INVESTIGATING.value, IncidentStatus.RESOLVED.value},
    IncidentStatus.INVESTIGATING.value: {IncidentStatus.RESOLVED.value},
    IncidentStatus.RESOLVED.value: set()
}

ALERT_PRIORITIES = {
    IncidentPriority.MEDIUM.value,
    IncidentPriority.HIGH.value,
    IncidentPriority.CRITICAL.value
}

HIGH_PRIORITIES = {IncidentPriority.HIGH.value, IncidentPriority.CRITICAL.value}


@dataclass
class IncidentResult:
    """Result of an incident workflow operation."""
    success: bool
    incident: Optional[Incident] = None
    error_message: Optional[str] = None


def can_transition_incident(current_status: str, new_status: str) -> bool:
    return new_status in INCIDENT_TRANSITIONS.get(current_status, set())


def update_incident_status(
    incident: Incident,
    new_status: str,
    user_context: UserContext,
    resolution: Optional[str] = None,
    investigation_notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> IncidentResult:
    """
    Move an incident along its workflow.

    Resolved incidents are terminal and resolving requires a resolution text.
    """
    if not can_transition_incident(incident.status, new_status):
        return IncidentResult(
            success=False,
            incident=incident,
            error_message=f"Cannot change incident from {incident.status} to {new_status}"
        )

    if new_status == IncidentStatus.RESOLVED.value:
        if not resolution or not resolution.strip():
            return IncidentResult(
                success=False,
                incident=incident,
                error_message="Resolution is required to resolve an incident"
            )
        incident.resolution = resolution.strip()
        incident.resolved_at = now or datetime.utcnow()

    if investigation_notes:
        incident.investigation_notes = investigation_notes

    incident.status = new_status
    incident.update_timestamp(user_context.user_id)
    return IncidentResult(success=True, incident=incident)


def escalates_round(incident: Incident) -> bool:
    """Emergency incidents attached to a round put the round in incident status."""
    return incident.type == IncidentType.EMERGENCY.value and bool(incident.round_id)


def is_alert(incident: Incident) -> bool:
    return incident.status == IncidentStatus.OPEN.value and incident.priority in ALERT_PRIORITIES


def has_active_alert(incidents: Iterable[Incident]) -> bool:
    """True when any open incident has medium, high or critical priority."""
    return any(is_alert(incident) for incident in incidents)


def active_alerts(incidents: Iterable[Incident]) -> List[Incident]:
    """Open alert-level incidents, most severe and most recent first."""
    order = {
        IncidentPriority.CRITICAL.value: 0,
        IncidentPriority.HIGH.value: 1,
        IncidentPriority.MEDIUM.value: 2
    }
    alerts = [incident for incident in incidents if is_alert(incident)]
    alerts.sort(key=lambda incident: incident.reported_at, reverse=True)
    alerts.sort(key=lambda incident: order[incident.priority])
    return alerts


def count_by_priority(incidents: Iterable[Incident]) -> Dict[str, int]:
    counts = {priority.value: 0 for priority in IncidentPriority}
    for incident in incidents:
        counts[incident.priority] = counts.get(incident.priority, 0) + 1
    return counts
