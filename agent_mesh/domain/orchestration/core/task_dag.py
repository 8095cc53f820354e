"""Construction and state propagation for task dependency graphs.

Node lifecycle: ``pending -> ready -> running -> completed | failed``.
A node becomes ready only once every dependency has completed. A failed
dependency leaves its dependents pending for good; the scheduler notices
the empty ready set and stops.
"""
from typing import Dict, List, Optional, Set

import structlog

from agent_mesh.domain.models.agent_state import (
    DAGNode,
    NodeStatus,
    SatelliteResult,
    Task,
    TaskDAG,
    TaskStatus,
)
from agent_mesh.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)


def _reaches(nodes: Dict[str, DAGNode], start: str, target: str) -> bool:
    """True if ``target`` is reachable from ``start`` along dependency edges"""

    stack = [start]
    seen: Set[str] = set()
    while stack:
        current = stack.pop()
        if current == target:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(nodes[current].dependencies)
    return False


def build_dag(tasks: List[Task], reject_cycles: bool = True) -> TaskDAG:
    """Build a DAG with one node per task.

    Dependencies are task descriptions resolved by exact match. Unknown
    descriptions and self references are dropped. With ``reject_cycles``
    an edge that would close a cycle is dropped and logged.
    """
    nodes: Dict[str, DAGNode] = {}
    description_to_node: Dict[str, str] = {}

    for index, task in enumerate(tasks):
        node_id = f"node_{index}"
        nodes[node_id] = DAGNode(id=node_id, task_id=task.id, satellite_id=task.satellite_id)
        description_to_node.setdefault(task.description, node_id)

    for index, task in enumerate(tasks):
        node = nodes[f"node_{index}"]
        for dependency in task.dependencies:
            dep_id = description_to_node.get(dependency)
            if dep_id is None or dep_id == node.id or dep_id in node.dependencies:
                if dep_id is None:
                    logger.debug("Dropping unknown dependency", node_id=node.id, dependency=dependency[:80])
                continue
            if reject_cycles and _reaches(nodes, dep_id, node.id):
                logger.warning("Dropping dependency that would create a cycle", node_id=node.id, depends_on=dep_id)
                continue
            node.dependencies.append(dep_id)
            nodes[dep_id].dependents.append(node.id)

    for node in nodes.values():
        if not node.dependencies:
            node.status = NodeStatus.READY

    return TaskDAG(
        nodes=nodes,
        root_nodes=[n.id for n in nodes.values() if not n.dependencies],
        leaf_nodes=[n.id for n in nodes.values() if not n.dependents],
    )


def find_cycle(dag: TaskDAG) -> Optional[List[str]]:
    """Return one dependency cycle as a list of node ids, or None"""

    WHITE, GREY, BLACK = 0, 1, 2
    color = {node_id: WHITE for node_id in dag.nodes}
    path: List[str] = []

    def visit(node_id: str) -> Optional[List[str]]:
        color[node_id] = GREY
        path.append(node_id)
        for dep in dag.nodes[node_id].dependencies:
            if color[dep] == GREY:
                return path[path.index(dep):] + [dep]
            if color[dep] == WHITE:
                cycle = visit(dep)
                if cycle:
                    return cycle
        path.pop()
        color[node_id] = BLACK
        return None

    for node_id in dag.nodes:
        if color[node_id] == WHITE:
            cycle = visit(node_id)
            if cycle:
                return cycle
    return None


def _dependencies_completed(dag: TaskDAG, node: DAGNode) -> bool:
    return all(dag.nodes[dep].status == NodeStatus.COMPLETED for dep in node.dependencies)


def get_ready_nodes(dag: TaskDAG) -> List[DAGNode]:
    """Ready nodes, promoting satisfied pending nodes along the way"""

    ready = []
    for node in dag.nodes.values():
        if node.status == NodeStatus.PENDING and _dependencies_completed(dag, node):
            node.status = NodeStatus.READY
            agent_logger.log_dag_transition(node.id, NodeStatus.PENDING.value, NodeStatus.READY.value, node.satellite_id.value)
        if node.status == NodeStatus.READY:
            ready.append(node)
    return ready


def mark_node_running(dag: TaskDAG, node_id: str, task: Optional[Task] = None) -> bool:
    node = dag.nodes[node_id]
    if node.status != NodeStatus.READY:
        logger.warning("Refusing to start node that is not ready", node_id=node_id, status=node.status.value)
        return False

    node.status = NodeStatus.RUNNING
    if task is not None:
        task.status = TaskStatus.IN_PROGRESS
    agent_logger.log_dag_transition(node_id, NodeStatus.READY.value, NodeStatus.RUNNING.value, node.satellite_id.value)
    return True


async def mark_node_complete(
    dag: TaskDAG,
    node_id: str,
    result: SatelliteResult,
    task: Optional[Task] = None,
) -> None:
    """Record a terminal result and promote dependents that became ready"""

    async with dag.lock:
        node = dag.nodes[node_id]
        if node.status.is_terminal:
            logger.warning("Ignoring completion for terminal node", node_id=node_id, status=node.status.value)
            return

        previous = node.status
        node.status = NodeStatus.COMPLETED if result.success else NodeStatus.FAILED
        node.result = result
        if task is not None:
            task.status = TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
        agent_logger.log_dag_transition(node_id, previous.value, node.status.value, node.satellite_id.value)

        if not result.success:
            return

        for dependent_id in node.dependents:
            dependent = dag.nodes[dependent_id]
            if dependent.status == NodeStatus.PENDING and _dependencies_completed(dag, dependent):
                dependent.status = NodeStatus.READY
                agent_logger.log_dag_transition(
                    dependent_id, NodeStatus.PENDING.value, NodeStatus.READY.value, dependent.satellite_id.value
                )


def is_dag_complete(dag: TaskDAG) -> bool:
    return all(node.status.is_terminal for node in dag.nodes.values())
