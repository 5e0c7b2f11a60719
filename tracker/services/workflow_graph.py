"""
WorkflowGraph — the ordered, read-only view of an organization's workflow.

Flattening rule:
    Stages sorted by sequence_order. For each stage, if it has sub-stages,
    emit one position per sub-stage (sorted by the sub-stage's own
    sequence_order); otherwise emit the bare-stage position once.

The resulting list is the single source of truth for "forward" and
"previous". Positions compare by index only, never by id string.

Colliding sequence_order values are a ConfigurationError, never silently
tie-broken. An empty workflow is valid for display (see
workflow_config_service.list_structure) but not for transitions.

Usage:
    from tracker.services.workflow_graph import load_workflow_graph

    graph = load_workflow_graph(organization_id)
    idx = graph.index_of(item.position)
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select

from tracker.core.exceptions import ConfigurationError
from tracker.models import db
from tracker.models.workflow import Position, WorkflowStage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphNode:
    """One occupiable position together with its place in the order."""

    index: int
    position: Position
    stage_name: str | None = None
    sub_stage_name: str | None = None

    @property
    def label(self) -> str:
        if self.sub_stage_name:
            return f"{self.stage_name} › {self.sub_stage_name}"
        return self.stage_name or ""

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            **self.position.to_dict(),
            "stage_name": self.stage_name,
            "sub_stage_name": self.sub_stage_name,
        }


class WorkflowGraph:
    """Immutable snapshot of one organization's flattened workflow."""

    def __init__(self, organization_id: str, nodes: list[GraphNode], sub_stages: dict[str, tuple[str, ...]]):
        self.organization_id = organization_id
        self._nodes = tuple(nodes)
        self._index = {node.position: node.index for node in self._nodes}
        self._sub_stages = dict(sub_stages)

    # ── Construction ─────────────────────────────────────────────────────

    @classmethod
    def from_stages(cls, organization_id: str, stages) -> "WorkflowGraph":
        """Build a graph from stage rows.

        ``stages`` is any iterable of objects exposing ``id``, ``name``,
        ``sequence_order`` and ``sub_stages`` (each with ``id``, ``name``,
        ``sequence_order``). Input order does not matter.

        Raises:
            ConfigurationError: No stages, or duplicate sequence_order among
                stages or among the sub-stages of one stage.
        """
        stages = list(stages)
        if not stages:
            raise ConfigurationError(
                f"Organization {organization_id} has no workflow stages configured"
            )

        _ensure_unique_order(stages, f"stages of organization {organization_id}")

        nodes: list[GraphNode] = []
        sub_stage_map: dict[str, tuple[str, ...]] = {}
        for stage in sorted(stages, key=lambda s: s.sequence_order):
            subs = list(stage.sub_stages or [])
            _ensure_unique_order(subs, f"sub-stages of stage '{stage.name}'")
            subs.sort(key=lambda ss: ss.sequence_order)
            sub_stage_map[stage.id] = tuple(ss.id for ss in subs)

            if subs:
                for ss in subs:
                    nodes.append(GraphNode(
                        index=len(nodes),
                        position=Position(stage.id, ss.id),
                        stage_name=stage.name,
                        sub_stage_name=ss.name,
                    ))
            else:
                nodes.append(GraphNode(
                    index=len(nodes),
                    position=Position(stage.id, None),
                    stage_name=stage.name,
                ))

        return cls(organization_id, nodes, sub_stage_map)

    # ── Queries ──────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    @property
    def positions(self) -> list[Position]:
        return [node.position for node in self._nodes]

    @property
    def first(self) -> GraphNode:
        return self._nodes[0]

    @property
    def last(self) -> GraphNode:
        return self._nodes[-1]

    def node_at(self, index: int) -> GraphNode | None:
        if 0 <= index < len(self._nodes):
            return self._nodes[index]
        return None

    def index_of(self, position: Position) -> int | None:
        """Index of an occupiable position, or None.

        A bare stage that has sub-stages is not occupiable and therefore
        has no index; neither does a sub-stage paired with the wrong stage.
        """
        return self._index.get(position)

    def node_for(self, position: Position) -> GraphNode | None:
        idx = self.index_of(position)
        return None if idx is None else self._nodes[idx]

    def has_stage(self, stage_id: str) -> bool:
        return stage_id in self._sub_stages

    def sub_stage_ids(self, stage_id: str) -> tuple[str, ...]:
        return self._sub_stages.get(stage_id, ())

    def stage_has_sub_stages(self, stage_id: str) -> bool:
        return bool(self._sub_stages.get(stage_id))

    def entry_position(self, stage_id: str) -> Position | None:
        """Where an item lands when it enters ``stage_id``: the first
        sub-stage if there are any, otherwise the bare stage."""
        if stage_id not in self._sub_stages:
            return None
        subs = self._sub_stages[stage_id]
        return Position(stage_id, subs[0] if subs else None)

    def to_list(self) -> list[dict]:
        return [node.to_dict() for node in self._nodes]


def _ensure_unique_order(rows, what: str) -> None:
    seen: dict[int, str] = {}
    for row in rows:
        if row.sequence_order in seen:
            raise ConfigurationError(
                f"Duplicate sequence_order {row.sequence_order} among {what}: "
                f"'{seen[row.sequence_order]}' and '{row.name}'"
            )
        seen[row.sequence_order] = row.name


def load_workflow_graph(organization_id: str) -> WorkflowGraph:
    """Load the organization's stages and sub-stages into a WorkflowGraph.

    Read-only; the returned snapshot is safe to reuse for a whole batch.
    """
    stages = db.session.execute(
        select(WorkflowStage)
        .where(WorkflowStage.organization_id == organization_id)
        .order_by(WorkflowStage.sequence_order)
    ).scalars().all()

    graph = WorkflowGraph.from_stages(organization_id, stages)
    logger.debug(
        "Loaded workflow graph for organization %s: %d stages, %d positions",
        organization_id, len(stages), len(graph),
    )
    return graph
