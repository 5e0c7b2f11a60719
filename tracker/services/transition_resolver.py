"""
Transition resolver — computes the next/previous legal position.

Pure functions over a WorkflowGraph snapshot; no I/O.

Rules:
  - Forward without target: the position immediately after current. Because
    the graph is flattened, remaining sub-stages of the current stage come
    before the next stage.
  - Forward with target: the target must sit strictly after current. A
    target stage that has sub-stages resolves to its FIRST sub-stage.
  - Previous: the position immediately before current. From the first
    sub-stage of a stage this is the last sub-stage of the preceding stage
    (or the preceding bare stage); a stage with sub-stages is never
    returned bare.

Boundaries are explicit Terminal values, not None and not exceptions:
callers must branch on ``isinstance(result, Terminal)``.

Local invertibility:
    resolve_previous(resolve_forward(P)) == P for every non-last P.
    The converse, resolve_forward(resolve_previous(P)) == P, also holds for
    plain one-step moves. Only forward-to-target collapses: moving to bare
    stage B lands on B's first sub-stage, so the single hop back from
    there returns to the stage before B, not to "B" itself.
"""

from dataclasses import dataclass

from tracker.core.exceptions import InvalidTargetError, NoValidTransitionError
from tracker.models.workflow import Position
from tracker.services.workflow_graph import WorkflowGraph


@dataclass(frozen=True)
class Terminal:
    """No further position in the requested direction."""

    boundary: str  # "end" | "start"
    message: str

    def __bool__(self) -> bool:
        return False


END_OF_WORKFLOW = Terminal("end", "Item is already at the last position of the workflow")
START_OF_WORKFLOW = Terminal("start", "Item is already at the first position of the workflow")


def _current_index(current: Position, graph: WorkflowGraph) -> int:
    idx = graph.index_of(current)
    if idx is not None:
        return idx
    if not graph.has_stage(current.stage_id):
        raise NoValidTransitionError(
            f"Current stage {current.stage_id} is not part of the workflow"
        )
    if current.sub_stage_id is None:
        raise NoValidTransitionError(
            f"Current stage {current.stage_id} has sub-stages; an item cannot rest at the bare stage"
        )
    raise NoValidTransitionError(
        f"Current sub-stage {current.sub_stage_id} does not belong to stage {current.stage_id}"
    )


def _effective_target(target: Position, graph: WorkflowGraph) -> Position:
    if not graph.has_stage(target.stage_id):
        raise InvalidTargetError(f"Target stage {target.stage_id} is not part of the workflow")

    if target.sub_stage_id is None:
        # Stages with sub-divisions are entered at their first sub-stage
        return graph.entry_position(target.stage_id)

    if target.sub_stage_id not in graph.sub_stage_ids(target.stage_id):
        raise InvalidTargetError(
            f"Target sub-stage {target.sub_stage_id} does not belong to stage {target.stage_id}"
        )
    return target


def resolve_forward(
    current: Position,
    target: Position | None,
    graph: WorkflowGraph,
) -> Position | Terminal:
    """Resolve a forward move.

    Returns:
        The destination Position, or END_OF_WORKFLOW when ``target`` is None
        and ``current`` is the last position.

    Raises:
        NoValidTransitionError: ``current`` is not an occupiable position.
        InvalidTargetError: ``target`` unknown or not strictly after current.
    """
    current_idx = _current_index(current, graph)

    if target is None:
        node = graph.node_at(current_idx + 1)
        return node.position if node else END_OF_WORKFLOW

    destination = _effective_target(target, graph)
    target_idx = graph.index_of(destination)
    if target_idx <= current_idx:
        raise InvalidTargetError(
            f"Target {destination} is not after the current position {current}"
        )
    return destination


def resolve_previous(current: Position, graph: WorkflowGraph) -> Position | Terminal:
    """Resolve a one-step-back (rework) move.

    Returns:
        The preceding Position, or START_OF_WORKFLOW at the first position.

    Raises:
        NoValidTransitionError: ``current`` is not an occupiable position.
    """
    current_idx = _current_index(current, graph)
    if current_idx == 0:
        return START_OF_WORKFLOW
    return graph.node_at(current_idx - 1).position


def forward_targets(current: Position, graph: WorkflowGraph) -> list:
    """Every node a forward-to-target move may land on, in graph order."""
    current_idx = _current_index(current, graph)
    return [node for node in graph if node.index > current_idx]
