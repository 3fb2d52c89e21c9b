"""Stage graph: the lock/unlock/completion state machine over the six stages.

Every transition returns a new ``StageGraph``; nothing mutates a graph in
place. The unlock frontier is contiguous: stage ``k`` is unlocked only if
stage ``k - 1`` is completed.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from gencoach.errors import InvalidTransition


class StageStatus(str, Enum):
    """Observable state of a single stage node."""
    LOCKED = "locked"
    UNLOCKED = "unlocked-incomplete"
    COMPLETED = "completed"


class StageDefinition(BaseModel):
    """Static description of one pipeline stage."""
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    title: str
    description: str


STAGE_DEFINITIONS: tuple[StageDefinition, ...] = (
    StageDefinition(
        id=1,
        name="Idea Management",
        title="Idea Management & Validation",
        description="Define your concept, target user, and problem. Get market analysis and competitive insights.",
    ),
    StageDefinition(
        id=2,
        name="Concept Validation",
        title="Concept Validation (PoC)",
        description="Test feasibility with proof-of-concept code and documentation.",
    ),
    StageDefinition(
        id=3,
        name="Specification",
        title="Feature Specification",
        description="Define features, UI requirements, and technical stack using MoSCoW method.",
    ),
    StageDefinition(
        id=4,
        name="CLI Configuration",
        title="Claude CLI Configuration",
        description="Connect and configure Claude with your API key and parameters.",
    ),
    StageDefinition(
        id=5,
        name="Code Generation",
        title="Code Generation, Review & QA",
        description="Generate functional code, review it, and validate with test plans.",
    ),
    StageDefinition(
        id=6,
        name="Automation",
        title="Automation & Launch Prep",
        description="Generate n8n workflows, README, and your complete project package.",
    ),
)

STAGE_COUNT = len(STAGE_DEFINITIONS)
STAGE_IDS: tuple[int, ...] = tuple(d.id for d in STAGE_DEFINITIONS)


class StageNode(BaseModel):
    """A stage definition together with its progress flags."""
    model_config = ConfigDict(frozen=True)

    definition: StageDefinition
    completed: bool = False
    locked: bool = True

    @property
    def id(self) -> int:
        return self.definition.id

    @property
    def status(self) -> StageStatus:
        if self.completed:
            return StageStatus.COMPLETED
        if self.locked:
            return StageStatus.LOCKED
        return StageStatus.UNLOCKED


class StageProgress(BaseModel):
    """Summary of how far through the pipeline a project is."""
    current_stage: int
    completed_stages: list[int] = Field(default_factory=list)
    total_stages: int = STAGE_COUNT


def _initial_nodes() -> tuple[StageNode, ...]:
    return tuple(
        StageNode(definition=d, completed=False, locked=d.id != 1)
        for d in STAGE_DEFINITIONS
    )


class StageGraph(BaseModel):
    """Immutable snapshot of stage progress.

    Attributes:
        nodes: One node per stage, ordered by stage id.
        current_stage: The stage the user is currently looking at.
    """
    model_config = ConfigDict(frozen=True)

    nodes: tuple[StageNode, ...] = Field(default_factory=_initial_nodes)
    current_stage: int = 1

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def initial(cls) -> "StageGraph":
        """Stage 1 unlocked, stages 2-6 locked, nothing completed."""
        return cls()

    @classmethod
    def from_completed(cls, stage_ids: Iterable[int], current_stage: int = 1) -> "StageGraph":
        """Rebuild a graph by replaying completions in stage order.

        Raises:
            InvalidTransition: If the ids are not a contiguous prefix of 1..6.
        """
        graph = cls.initial()
        for stage_id in sorted(set(stage_ids)):
            graph = graph.complete(stage_id)
        if graph.can_enter(current_stage):
            graph = graph.set_current(current_stage)
        return graph

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _node(self, stage_id: int) -> StageNode | None:
        if stage_id not in STAGE_IDS:
            return None
        return self.nodes[stage_id - 1]

    def can_enter(self, stage_id: int) -> bool:
        """``True`` iff the stage exists and is not locked."""
        node = self._node(stage_id)
        return node is not None and not node.locked

    def status(self, stage_id: int) -> StageStatus:
        node = self._node(stage_id)
        if node is None:
            raise InvalidTransition(stage_id, "status", "stage id out of range 1-6")
        return node.status

    @property
    def completed_stages(self) -> list[int]:
        return [n.id for n in self.nodes if n.completed]

    @property
    def is_terminal(self) -> bool:
        return all(n.completed for n in self.nodes)

    @property
    def progress(self) -> StageProgress:
        return StageProgress(
            current_stage=self.current_stage,
            completed_stages=self.completed_stages,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def complete(self, stage_id: int) -> "StageGraph":
        """Mark *stage_id* completed and unlock the next stage.

        Completing an already-completed stage returns an equal graph.

        Raises:
            InvalidTransition: If the stage is out of range or still locked.
        """
        node = self._node(stage_id)
        if node is None:
            raise InvalidTransition(stage_id, "complete", "stage id out of range 1-6")
        if node.locked:
            raise InvalidTransition(
                stage_id, "complete", f"stage is locked until stage {stage_id - 1} is completed"
            )

        nodes = list(self.nodes)
        nodes[stage_id - 1] = node.model_copy(update={"completed": True})
        if stage_id < STAGE_COUNT:
            following = nodes[stage_id]
            nodes[stage_id] = following.model_copy(update={"locked": False})
        return self.model_copy(update={"nodes": tuple(nodes)})

    def set_current(self, stage_id: int) -> "StageGraph":
        """Move the cursor to *stage_id*; locked stages cannot be entered."""
        if not self.can_enter(stage_id):
            raise InvalidTransition(stage_id, "set_current", "stage is locked")
        return self.model_copy(update={"current_stage": stage_id})

    def reset(self) -> "StageGraph":
        """Return the initial configuration (used when starting a new project)."""
        return StageGraph.initial()
