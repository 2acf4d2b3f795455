"""Graph builder, planner, scheduler and the engine facade."""

from infra_provisioner.engine.engine import Engine
from infra_provisioner.engine.graph import DependencyGraph, ResourceGraph, build_graph
from infra_provisioner.engine.planner import plan_changes
from infra_provisioner.engine.registry import ProviderRegistry
from infra_provisioner.engine.scheduler import Scheduler
from infra_provisioner.engine.types import (
    Action,
    ActionResult,
    ActionStatus,
    ApplyResult,
    Plan,
    PlanMetadata,
    ResourceChange,
)

__all__ = [
    "Action",
    "ActionResult",
    "ActionStatus",
    "ApplyResult",
    "DependencyGraph",
    "Engine",
    "Plan",
    "PlanMetadata",
    "ProviderRegistry",
    "ResourceChange",
    "ResourceGraph",
    "Scheduler",
    "build_graph",
    "plan_changes",
]
