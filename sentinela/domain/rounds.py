# SPDX-License-Identifier: Apache-2.0

"""
Round domain logic for lifecycle management and progress tracking.

This module contains pure functions for round status transitions,
checkpoint visit registration and progress aggregation across templates,
physical checkpoints and visit records.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable, Set

from ..models.entities import (
    Round, RoundTemplate, Checkpoint, CheckpointVisit, Client, UserContext
)
from ..models.enums import RoundStatus, VehicleType, CheckpointVisitStatus
from .geo import Coordinate, is_within_geofence
from .vehicles import OdometerEntry, validate_odometer_reading, odometer_diff


# Allowed round status transitions
ROUND_TRANSITIONS = {
    RoundStatus.PENDING.value: {RoundStatus.ACTIVE.value, RoundStatus.INCIDENT.value},
    RoundStatus.ACTIVE.value: {RoundStatus.COMPLETED.value, RoundStatus.INCIDENT.value},
    RoundStatus.INCIDENT.value: {RoundStatus.ACTIVE.value},
    RoundStatus.COMPLETED.value: set()
}

# Visit rejection codes
ROUND_NOT_ACTIVE = "ROUND_NOT_ACTIVE"
CODE_MISMATCH = "CODE_MISMATCH"
CHECKPOINT_INACTIVE = "CHECKPOINT_INACTIVE"
CHECKPOINT_NOT_IN_ROUND = "CHECKPOINT_NOT_IN_ROUND"
ALREADY_VISITED = "ALREADY_VISITED"
OUTSIDE_GEOFENCE = "OUTSIDE_GEOFENCE"


@dataclass
class WorkflowResult:
    """Result of a round workflow operation."""
    success: bool
    round: Optional[Round] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VisitResult:
    """Result of a checkpoint scan."""
    success: bool
    visit: Optional[CheckpointVisit] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    distance_m: Optional[float] = None


@dataclass
class RoundCheckpoint:
    """Checkpoint as seen by a round, with its visited flag."""
    id: str
    name: str
    lat: float
    lng: float
    visited: bool
    round_id: str
    client_id: str
    order_index: int
    qr_code: Optional[str] = None
    manual_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "lat": self.lat,
            "lng": self.lng,
            "visited": self.visited,
            "round_id": self.round_id,
            "client_id": self.client_id,
            "order_index": self.order_index,
            "qr_code": self.qr_code,
            "manual_code": self.manual_code
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _percentage(part: int, total: int) -> int:
    if total <= 0:
        return 0
    return _round_half_up(part / total * 100)


def can_transition_round(current_status: str, new_status: str) -> bool:
    """Check if a round status transition is allowed."""
    return new_status in ROUND_TRANSITIONS.get(current_status, set())


def _transition(round_: Round, new_status: RoundStatus, user_context: UserContext) -> Optional[WorkflowResult]:
    if not can_transition_round(round_.status, new_status.value):
        return WorkflowResult(
            success=False,
            round=round_,
            error_code="INVALID_TRANSITION",
            error_message=f"Cannot change round from {round_.status} to {new_status.value}"
        )
    round_.status = new_status
    round_.update_timestamp(user_context.user_id)
    return None


def start_round(
    round_: Round,
    user_context: UserContext,
    initial_odometer: Optional[float] = None,
    odometer_history: Optional[List[OdometerEntry]] = None,
    now: Optional[datetime] = None
) -> WorkflowResult:
    """
    Start a pending round.

    Motorized rounds require an initial odometer reading, which must not be
    lower than the vehicle's last known reading.

    Args:
        round_: Round to start
        user_context: Acting user
        initial_odometer: Odometer at departure
        odometer_history: Vehicle odometer history for validation
        now: Start time (defaults to now)

    Returns:
        WorkflowResult with the updated round; ``data['odometer']`` holds the
        odometer validation when one was performed
    """
    if round_.status != RoundStatus.PENDING.value:
        return WorkflowResult(
            success=False,
            round=round_,
            error_code="INVALID_TRANSITION",
            error_message=f"Only pending rounds can be started (current: {round_.status})"
        )

    data: Dict[str, Any] = {}
    if round_.vehicle != VehicleType.ON_FOOT.value:
        if initial_odometer is None:
            return WorkflowResult(
                success=False,
                round=round_,
                error_code="ODOMETER_REQUIRED",
                error_message="Initial odometer is required for motorized rounds"
            )
        validation = validate_odometer_reading(odometer_history or [], initial_odometer)
        data["odometer"] = validation.to_dict()
        if not validation.valid:
            return WorkflowResult(
                success=False,
                round=round_,
                error_code=validation.error_code,
                error_message=validation.message,
                data=data
            )
        round_.initial_odometer = initial_odometer

    failure = _transition(round_, RoundStatus.ACTIVE, user_context)
    if failure:
        return failure

    round_.start_time = now or datetime.utcnow()
    return WorkflowResult(success=True, round=round_, data=data)


def complete_round(
    round_: Round,
    user_context: UserContext,
    final_odometer: Optional[float] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> WorkflowResult:
    """
    Complete an active round.

    Returns:
        WorkflowResult; ``data['distance_km']`` is the odometer difference for
        motorized rounds
    """
    if round_.status != RoundStatus.ACTIVE.value:
        return WorkflowResult(
            success=False,
            round=round_,
            error_code="INVALID_TRANSITION",
            error_message=f"Only active rounds can be completed (current: {round_.status})"
        )

    data: Dict[str, Any] = {}
    if round_.vehicle != VehicleType.ON_FOOT.value:
        if final_odometer is None:
            return WorkflowResult(
                success=False,
                round=round_,
                error_code="ODOMETER_REQUIRED",
                error_message="Final odometer is required for motorized rounds"
            )
        if round_.initial_odometer is not None and final_odometer < round_.initial_odometer:
            return WorkflowResult(
                success=False,
                round=round_,
                error_code="KM_LESS_THAN_INITIAL",
                error_message=(
                    f"Final odometer ({final_odometer:g} km) is lower than "
                    f"initial odometer ({round_.initial_odometer:g} km)"
                )
            )
        data["distance_km"] = odometer_diff(round_.initial_odometer, final_odometer)

    if final_odometer is not None:
        round_.final_odometer = final_odometer
    if notes:
        round_.notes = notes

    failure = _transition(round_, RoundStatus.COMPLETED, user_context)
    if failure:
        return failure

    round_.end_time = now or datetime.utcnow()
    if round_.start_time:
        data["duration_seconds"] = int((round_.end_time - round_.start_time).total_seconds())
    return WorkflowResult(success=True, round=round_, data=data)


def flag_round_incident(round_: Round, user_context: UserContext) -> WorkflowResult:
    """Move a round that is not completed to incident status."""
    failure = _transition(round_, RoundStatus.INCIDENT, user_context)
    if failure:
        return failure
    return WorkflowResult(success=True, round=round_)


def resume_round(round_: Round, user_context: UserContext) -> WorkflowResult:
    """Resume a round held in incident status."""
    if round_.status != RoundStatus.INCIDENT.value:
        return WorkflowResult(
            success=False,
            round=round_,
            error_code="INVALID_TRANSITION",
            error_message=f"Only rounds in incident can be resumed (current: {round_.status})"
        )
    failure = _transition(round_, RoundStatus.ACTIVE, user_context)
    if failure:
        return failure
    return WorkflowResult(success=True, round=round_)


def round_client_ids(round_: Round, template: Optional[RoundTemplate]) -> List[str]:
    """Clients a round visits, in template order."""
    if template and template.checkpoints:
        client_ids: List[str] = []
        for entry in template.checkpoints:
            if entry.client_id not in client_ids:
                client_ids.append(entry.client_id)
        return client_ids
    if round_.client_id:
        return [round_.client_id]
    return []


def code_matches(checkpoint: Checkpoint, code: str) -> bool:
    """A scan matches when it equals the QR payload or the manual code (case-insensitive)."""
    code = code.strip()
    if checkpoint.qr_code and code == checkpoint.qr_code:
        return True
    if checkpoint.manual_code and code.upper() == checkpoint.manual_code.strip().upper():
        return True
    return False


def match_checkpoint(checkpoints: List[Checkpoint], code: str) -> Optional[Checkpoint]:
    """First checkpoint matching a scanned code, active ones before inactive ones."""
    matches = [checkpoint for checkpoint in checkpoints if code_matches(checkpoint, code)]
    for checkpoint in matches:
        if checkpoint.active and not checkpoint.is_deleted():
            return checkpoint
    return matches[0] if matches else None


def register_visit(
    round_: Round,
    checkpoint: Checkpoint,
    code: str,
    user_context: UserContext,
    existing_visits: Iterable[CheckpointVisit] = (),
    allowed_client_ids: Optional[List[str]] = None,
    position: Optional[Coordinate] = None,
    force: bool = False,
    duration: int = 0,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> VisitResult:
    """
    Register an agent's passage through a checkpoint.

    The scanned code must match the checkpoint, the checkpoint must be active
    and belong to one of the round's clients, and it may be visited only once
    per round. When a position is given and the checkpoint has coordinates,
    the position must lie inside its geofence; a forced scan outside the
    geofence is recorded as ``delayed``.

    Returns:
        VisitResult with the new (unsaved) visit or a rejection code
    """
    if round_.status != RoundStatus.ACTIVE.value:
        return VisitResult(
            success=False,
            error_code=ROUND_NOT_ACTIVE,
            error_message=f"Visits can only be registered on active rounds (current: {round_.status})"
        )

    if not code_matches(checkpoint, code):
        return VisitResult(
            success=False,
            error_code=CODE_MISMATCH,
            error_message="Scanned code does not match this checkpoint"
        )

    if not checkpoint.active or checkpoint.is_deleted():
        return VisitResult(
            success=False,
            error_code=CHECKPOINT_INACTIVE,
            error_message="Checkpoint is inactive"
        )

    if allowed_client_ids is not None and checkpoint.client_id not in allowed_client_ids:
        return VisitResult(
            success=False,
            error_code=CHECKPOINT_NOT_IN_ROUND,
            error_message="Checkpoint does not belong to a client of this round"
        )

    if any(visit.checkpoint_id == checkpoint.id for visit in existing_visits):
        return VisitResult(
            success=False,
            error_code=ALREADY_VISITED,
            error_message="Checkpoint already visited in this round"
        )

    status = CheckpointVisitStatus.COMPLETED
    distance_m = None
    if position is not None and checkpoint.has_coordinates():
        inside, distance_m = is_within_geofence(
            position,
            Coordinate(checkpoint.lat, checkpoint.lng),
            checkpoint.geofence_radius
        )
        distance_m = round(distance_m, 1)
        if not inside:
            if not force:
                return VisitResult(
                    success=False,
                    error_code=OUTSIDE_GEOFENCE,
                    error_message=(
                        f"Position is {distance_m:g} m from the checkpoint "
                        f"(allowed {checkpoint.geofence_radius:g} m)"
                    ),
                    distance_m=distance_m
                )
            status = CheckpointVisitStatus.DELAYED

    visit = CheckpointVisit(
        round_id=round_.id,
        checkpoint_id=checkpoint.id,
        visit_time=now or datetime.utcnow(),
        duration=duration,
        lat=position.lat if position else None,
        lng=position.lng if position else None,
        distance_m=distance_m,
        status=status,
        notes=notes,
        organization_id=user_context.org_id,
        created_by=user_context.user_id,
        updated_by=user_context.user_id
    )
    return VisitResult(success=True, visit=visit, distance_m=distance_m)


def build_round_checkpoints(
    active_rounds: List[Round],
    templates: Dict[str, RoundTemplate],
    checkpoints: List[Checkpoint],
    clients: Dict[str, Client],
    visits: Iterable[CheckpointVisit]
) -> List[RoundCheckpoint]:
    """
    Flatten the checkpoints the given rounds must visit.

    Template rounds expand each template client into that client's active
    checkpoints with coordinates, ordered by ``order_index``. Rounds without
    a template get one pseudo-checkpoint for their client, when it has
    coordinates.

    Args:
        active_rounds: Rounds to expand
        templates: Templates by id
        checkpoints: Physical checkpoints of the clients involved
        clients: Clients by id
        visits: Visits registered for the rounds

    Returns:
        List of RoundCheckpoint
    """
    visited_by_round: Dict[str, Set[str]] = {}
    for visit in visits:
        visited_by_round.setdefault(visit.round_id, set()).add(visit.checkpoint_id)

    by_client: Dict[str, List[Checkpoint]] = {}
    for checkpoint in sorted(checkpoints, key=lambda cp: cp.order_index):
        if checkpoint.active and not checkpoint.is_deleted():
            by_client.setdefault(checkpoint.client_id, []).append(checkpoint)

    result: List[RoundCheckpoint] = []
    for round_ in active_rounds:
        visited = visited_by_round.get(round_.id, set())
        template = templates.get(round_.template_id) if round_.template_id else None

        if template is not None:
            for entry in template.checkpoints:
                for checkpoint in by_client.get(entry.client_id, []):
                    if not checkpoint.has_coordinates():
                        continue
                    result.append(RoundCheckpoint(
                        id=f"checkpoint_{checkpoint.id}",
                        name=checkpoint.name,
                        lat=float(checkpoint.lat),
                        lng=float(checkpoint.lng),
                        visited=checkpoint.id in visited,
                        round_id=round_.id,
                        client_id=entry.client_id,
                        order_index=checkpoint.order_index,
                        qr_code=checkpoint.qr_code,
                        manual_code=checkpoint.manual_code
                    ))
            continue

        client = clients.get(round_.client_id) if round_.client_id else None
        if client is not None and client.has_coordinates():
            result.append(RoundCheckpoint(
                id=f"client_{client.id}",
                name=client.name,
                lat=float(client.lat),
                lng=float(client.lng),
                visited=bool(visited),
                round_id=round_.id,
                client_id=client.id,
                order_index=1
            ))

    return result


def checkpoint_stats(checkpoints: List[RoundCheckpoint]) -> Dict[str, int]:
    """Totals and rounded completion percentage for a checkpoint list."""
    total = len(checkpoints)
    visited = sum(1 for checkpoint in checkpoints if checkpoint.visited)
    return {
        "total": total,
        "visited": visited,
        "pending": total - visited,
        "progress": _percentage(visited, total)
    }


def client_progress_stats(
    round_: Round,
    template: Optional[RoundTemplate],
    checkpoints: List[Checkpoint],
    visits: List[CheckpointVisit]
) -> Dict[str, Dict[str, int]]:
    """
    Per-client progress of a round.

    For template rounds the total of a client is the number of template
    entries for it and completed counts visits to its active checkpoints,
    capped at the total. A direct round reports its client with a total of 1
    and every visit counted.

    Returns:
        Mapping client_id -> {"total": int, "completed": int}
    """
    stats: Dict[str, Dict[str, int]] = {}

    if template is not None and template.checkpoints:
        active_ids: Dict[str, Set[str]] = {}
        for checkpoint in checkpoints:
            if checkpoint.active and not checkpoint.is_deleted():
                active_ids.setdefault(checkpoint.client_id, set()).add(checkpoint.id)

        for client_id in round_client_ids(round_, template):
            total = sum(1 for entry in template.checkpoints if entry.client_id == client_id)
            client_checkpoints = active_ids.get(client_id, set())
            completed = sum(1 for visit in visits if visit.checkpoint_id in client_checkpoints)
            stats[client_id] = {"total": total, "completed": min(completed, total)}
        return stats

    if round_.client_id:
        stats[round_.client_id] = {"total": 1, "completed": len(visits)}
    return stats


def client_progress(stats: Dict[str, Dict[str, int]], client_id: str) -> int:
    """Rounded completion percentage of one client (0 when unknown)."""
    client_stat = stats.get(client_id)
    if not client_stat:
        return 0
    return _percentage(client_stat["completed"], client_stat["total"])


def is_client_completed(stats: Dict[str, Dict[str, int]], client_id: str) -> bool:
    client_stat = stats.get(client_id)
    return bool(client_stat) and client_stat["total"] > 0 \
        and client_stat["completed"] == client_stat["total"]


def total_progress(stats: Dict[str, Dict[str, int]]) -> Dict[str, int]:
    """Aggregate totals across clients."""
    total = sum(stat["total"] for stat in stats.values())
    completed = sum(stat["completed"] for stat in stats.values())
    return {
        "total": total,
        "completed": completed,
        "progress": _percentage(completed, total)
    }
