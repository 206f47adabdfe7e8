"""Reconciliation core: turn a declared configuration into provider calls.

Layered flow:
1) build a resource graph from a configuration (``builder``)
2) order it by dependencies (``resolve``)
3) refresh recorded state through providers (``refresh``)
4) diff graph and state into a plan (``plan``)
5) execute the plan with bounded concurrency (``apply``)
6) commit successful actions to state (``engine``)
"""

from __future__ import annotations

from .builder import build_graph, resolve_variables
from .contracts import ResourceResult, RunReport
from .engine import ReconciliationEngine
from .graph import ResourceGraph
from .outputs import evaluate_outputs
from .plan import Plan, PlannedAction, build_apply_plan, build_destroy_plan
from .references import UNKNOWN, Reference, parse_reference
from .refresh import RefreshResult, refresh_records
from .resolve import destroy_order, order_state_records, topological_order

__all__ = [
    "UNKNOWN",
    "Plan",
    "PlannedAction",
    "ReconciliationEngine",
    "Reference",
    "RefreshResult",
    "ResourceGraph",
    "ResourceResult",
    "RunReport",
    "build_apply_plan",
    "build_destroy_plan",
    "build_graph",
    "destroy_order",
    "evaluate_outputs",
    "order_state_records",
    "parse_reference",
    "refresh_records",
    "resolve_variables",
    "topological_order",
]
