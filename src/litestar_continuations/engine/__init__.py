"""Workflow execution engine.

This module provides the checkpointed engine that interprets workflow
definitions and the graph used to validate them.
"""

from __future__ import annotations

from litestar_continuations.engine.graph import WorkflowGraph
from litestar_continuations.engine.workflow import WorkflowEngine

__all__ = [
    "WorkflowEngine",
    "WorkflowGraph",
]
