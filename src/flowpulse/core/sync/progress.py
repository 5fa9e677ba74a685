"""
Durable sync progress.

The partial sync state names the phase in progress; every phase before it
in SYNC_PHASES is complete. Only phases that iterate entities carry a
payload: the ordered list of discovered entity ids with a completion flag
each, so a restart resumes at the first incomplete entity.

The state is stored in the ``partial_state`` column of the sync metadata
row and written synchronously after every phase boundary and every entity.

Example:
    >>> tracker = ProgressTracker(store)
    >>> state = EntityBatchProgress(phase="active_projects").with_entities(["p1", "p2"])
    >>> tracker.save(state.mark_complete("p1"))
    >>> tracker.load().pending()
    ['p2']
"""

import logging
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import SyncPhase
from flowpulse.core.store.queries import get_sync_metadata
from flowpulse.core.store.writer import RecordWriter

logger = logging.getLogger(__name__)

SYNC_PHASES: tuple[SyncPhase, ...] = tuple(SyncPhase)

ENTITY_PHASES: tuple[SyncPhase, ...] = (
    SyncPhase.ACTIVE_PROJECTS,
    SyncPhase.PLANNED_PROJECTS,
    SyncPhase.COMPLETED_PROJECTS,
    SyncPhase.INITIATIVE_PROJECTS,
    SyncPhase.INITIATIVES,
)


class EntityProgress(BaseModel):
    """Completion of one entity within an entity phase."""

    entity_id: str
    status: Literal["complete", "incomplete"] = "incomplete"


class InitialIssuesProgress(BaseModel):
    phase: Literal["initial_issues"] = "initial_issues"


class RecentlyUpdatedProgress(BaseModel):
    """Carries the started issue ids fetched by initial_issues in this run."""

    phase: Literal["recently_updated_issues"] = "recently_updated_issues"
    started_ids: list[str] = Field(default_factory=list)


class EntityBatchProgress(BaseModel):
    """
    Progress through a phase that processes entities one at a time.

    ``entities`` is None until the phase has discovered its entity ids.
    """

    phase: Literal[
        "active_projects",
        "planned_projects",
        "completed_projects",
        "initiative_projects",
        "initiatives",
    ]
    entities: list[EntityProgress] | None = None

    @property
    def discovered(self) -> bool:
        return self.entities is not None

    def with_entities(self, entity_ids: list[str]) -> "EntityBatchProgress":
        """Record discovery; duplicate ids keep their first position."""
        seen: dict[str, None] = dict.fromkeys(entity_ids)
        return self.model_copy(
            update={"entities": [EntityProgress(entity_id=eid) for eid in seen]}
        )

    def pending(self) -> list[str]:
        """Incomplete entity ids in discovery order."""
        return [e.entity_id for e in self.entities or [] if e.status == "incomplete"]

    def completed_ids(self) -> list[str]:
        return [e.entity_id for e in self.entities or [] if e.status == "complete"]

    def mark_complete(self, entity_id: str) -> "EntityBatchProgress":
        entities = [
            EntityProgress(entity_id=e.entity_id, status="complete")
            if e.entity_id == entity_id
            else e
            for e in self.entities or []
        ]
        return self.model_copy(update={"entities": entities})


class ComputingMetricsProgress(BaseModel):
    phase: Literal["computing_metrics"] = "computing_metrics"


PartialSyncState = Annotated[
    Union[
        InitialIssuesProgress,
        RecentlyUpdatedProgress,
        EntityBatchProgress,
        ComputingMetricsProgress,
    ],
    Field(discriminator="phase"),
]

_state_adapter: TypeAdapter[PartialSyncState] = TypeAdapter(PartialSyncState)


def state_for_phase(phase: SyncPhase) -> PartialSyncState:
    """Fresh state for entering ``phase``."""
    if phase == SyncPhase.INITIAL_ISSUES:
        return InitialIssuesProgress()
    if phase == SyncPhase.RECENTLY_UPDATED_ISSUES:
        return RecentlyUpdatedProgress()
    if phase in ENTITY_PHASES:
        return EntityBatchProgress(phase=phase.value)
    if phase == SyncPhase.COMPUTING_METRICS:
        return ComputingMetricsProgress()
    raise ValueError(f"Phase {phase.value} has no partial state")


def state_phase(state: PartialSyncState) -> SyncPhase:
    return SyncPhase(state.phase)


def is_phase_done(state: PartialSyncState | None, phase: SyncPhase) -> bool:
    """True when ``state`` says ``phase`` already completed."""
    if state is None:
        return False
    return SYNC_PHASES.index(phase) < SYNC_PHASES.index(state_phase(state))


class ProgressTracker:
    """Loads, saves and clears the partial sync state of a store."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self._writer = RecordWriter(store)

    def load(self) -> PartialSyncState | None:
        """
        Load the saved state.

        Returns:
            The saved state, or None when there is none. A state that no
            longer validates is discarded with a warning and the sync starts
            from the first phase.
        """
        raw = get_sync_metadata(self.store).partial_state
        if not raw:
            return None
        try:
            return _state_adapter.validate_python(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable partial sync state: {e}")
            return None

    def save(self, state: PartialSyncState) -> None:
        self._writer.update_sync_metadata(
            partial_state=_state_adapter.dump_python(state, mode="json"),
            current_phase=state.phase,
        )
        logger.debug(f"Saved sync progress at {state.phase}")

    def clear(self) -> None:
        self._writer.update_sync_metadata(partial_state=None)
