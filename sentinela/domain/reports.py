# SPDX-License-Identifier: Apache-2.0

"""
Operational reporting: dashboard counters, general round reports broken
down by client and by agent, and period summaries.

Inputs are entities already loaded and filtered by the caller; functions
here only aggregate.
"""

import math
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable

from ..models.entities import Round, Incident, CheckpointVisit, Vehicle
from ..models.enums import RoundStatus, VehicleType
from .geo import format_duration
from .incidents import HIGH_PRIORITIES

REPORT_TYPES = ("daily", "weekly", "monthly")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_duration_seconds(round_: Round) -> Optional[float]:
    """Elapsed seconds of a finished round, None when not measurable."""
    if not round_.start_time or not round_.end_time:
        return None
    return (round_.end_time - round_.start_time).total_seconds()


def average_round_seconds(rounds: Iterable[Round]) -> float:
    """Average duration of the completed rounds that have both timestamps."""
    durations = [
        duration for duration in (
            round_duration_seconds(round_) for round_ in rounds
            if round_.status == RoundStatus.COMPLETED.value
        )
        if duration is not None
    ]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def compliance_rate(rounds: List[Round]) -> float:
    """Share of rounds completed, in percent with one decimal."""
    if not rounds:
        return 0.0
    completed = sum(1 for round_ in rounds if round_.status == RoundStatus.COMPLETED.value)
    return round(completed / len(rounds) * 100, 1)


def dashboard_stats(
    active_rounds: List[Round],
    rounds_today: List[Round],
    active_tactics: int,
    open_incidents: int,
    visits_today: int,
    vehicles: List[Vehicle]
) -> Dict[str, Any]:
    """
    Counters shown on the operations dashboard.

    Args:
        active_rounds: Rounds currently in progress
        rounds_today: Rounds created today (any status)
        active_tactics: Number of active tactical agents
        open_incidents: Number of open incidents
        visits_today: Checkpoint visits registered today
        vehicles: Active fleet vehicles

    Returns:
        Dashboard statistics dictionary
    """
    completed_today = [
        round_ for round_ in rounds_today
        if round_.status == RoundStatus.COMPLETED.value
    ]

    return {
        "active_tactics": len(active_rounds),
        "total_tactics": active_tactics,
        "completed_rounds": len(completed_today),
        "average_round_time": format_duration(average_round_seconds(completed_today)),
        "open_incidents": open_incidents,
        "verified_checkpoints": visits_today,
        "vehicles_in_field": {
            "cars": sum(1 for vehicle in vehicles if vehicle.type == VehicleType.CAR.value),
            "motorcycles": sum(1 for vehicle in vehicles if vehicle.type == VehicleType.MOTORCYCLE.value)
        },
        "compliance_rate": compliance_rate(rounds_today)
    }


def general_report(rounds: List[Round], active_tactics: int) -> Dict[str, Any]:
    """Totals for a set of rounds; average duration in minutes."""
    return {
        "total_rounds": len(rounds),
        "completed_rounds": sum(1 for r in rounds if r.status == RoundStatus.COMPLETED.value),
        "incident_rounds": sum(1 for r in rounds if r.status == RoundStatus.INCIDENT.value),
        "active_rounds": sum(1 for r in rounds if r.status == RoundStatus.ACTIVE.value),
        "average_duration": round(average_round_seconds(rounds) / 60, 1),
        "clients_served": len({r.client_id for r in rounds if r.client_id}),
        "tactics_active": active_tactics,
        "compliance_rate": compliance_rate(rounds)
    }


def _breakdown(rounds: List[Round], key: str, names: Dict[str, str], name_field: str) -> List[Dict[str, Any]]:
    groups: Dict[str, List[Round]] = {}
    for round_ in rounds:
        group_id = getattr(round_, key)
        if group_id:
            groups.setdefault(group_id, []).append(round_)

    reports = []
    for group_id, group in groups.items():
        reports.append({
            key: group_id,
            name_field: names.get(group_id, "N/A"),
            "total_rounds": len(group),
            "completed_rounds": sum(1 for r in group if r.status == RoundStatus.COMPLETED.value),
            "incident_rounds": sum(1 for r in group if r.status == RoundStatus.INCIDENT.value),
            "average_duration": round(average_round_seconds(group) / 60, 1)
        })
    reports.sort(key=lambda item: item["total_rounds"], reverse=True)
    return reports


def client_reports(rounds: List[Round], client_names: Dict[str, str]) -> List[Dict[str, Any]]:
    """Per-client round counts and average duration in minutes."""
    return _breakdown(rounds, "client_id", client_names, "client_name")


def tactic_reports(rounds: List[Round], user_names: Dict[str, str]) -> List[Dict[str, Any]]:
    """Per-agent round counts and average duration in minutes."""
    return _breakdown(rounds, "user_id", user_names, "tactic_name")


def period_report(
    rounds: List[Round],
    incidents: List[Incident],
    visits: List[CheckpointVisit],
    start: datetime,
    end: datetime,
    report_type: str
) -> Dict[str, Any]:
    """
    Summary of a reporting period.

    Args:
        rounds: Rounds created in the period
        incidents: Incidents reported in the period
        visits: Checkpoint visits in the period
        start: Period start
        end: Period end
        report_type: daily, weekly or monthly

    Returns:
        Report with period and summary sections

    Raises:
        ValueError: On an unknown report type or an inverted period
    """
    if report_type not in REPORT_TYPES:
        raise ValueError(f"Invalid report type: {report_type}")
    if end < start:
        raise ValueError("Period end must not be before its start")

    average_visit = 0
    if visits:
        average_visit = _round_half_up(sum(visit.duration or 0 for visit in visits) / len(visits))

    return {
        "period": {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "type": report_type
        },
        "summary": {
            "total_rounds": len(rounds),
            "completed_rounds": sum(1 for r in rounds if r.status == RoundStatus.COMPLETED.value),
            "active_rounds": sum(1 for r in rounds if r.status == RoundStatus.ACTIVE.value),
            "total_incidents": len(incidents),
            "high_priority_incidents": sum(1 for i in incidents if i.priority in HIGH_PRIORITIES),
            "total_checkpoint_visits": len(visits),
            "average_visit_duration": average_visit
        }
    }
