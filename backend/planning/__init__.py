"""Planning engine: decomposition, execution, replanning and reporting.

This module exports the components needed to plan and run an objective:
- Text-generation and execution collaborator contracts and LLM clients
- Response parsers for the three decomposition grammars
- Heuristic dependency inference for unparseable dependency replies
- Strategy selection and plan construction
- The execution engine, replanner and summarizer
- The TaskPlanner facade
"""

from planning.dependency_inference import (
    DependencyGraph,
    InferenceOptions,
    build_dependency_graph,
    infer_dependencies,
    remove_dependency_cycles,
    visualize_dependency_graph,
)
from planning.engine import ExecutionEngine
from planning.executor import LLMTaskExecutor, TaskExecutor
from planning.llm import LLMClient, MockLLMClient, TextGenerator
from planning.parser import (
    parse_dependencies,
    parse_effort,
    parse_hierarchical_plan,
    parse_numbered_list,
    read_dependency_assignments,
)
from planning.planner import PlanResult, TaskPlanner, should_plan
from planning.replanner import (
    Replanner,
    format_completed_tasks,
    format_failed_tasks,
    format_plan_for_prompt,
    should_replan,
)
from planning.strategies import PlanBuilder, resolve_options, select_strategy
from planning.summarizer import Summarizer, fallback_report, format_plan_results

__all__ = [
    # Collaborators
    "TextGenerator",
    "TaskExecutor",
    "LLMClient",
    "MockLLMClient",
    "LLMTaskExecutor",
    # Parsing
    "parse_numbered_list",
    "parse_dependencies",
    "parse_hierarchical_plan",
    "parse_effort",
    "read_dependency_assignments",
    # Dependency inference
    "InferenceOptions",
    "DependencyGraph",
    "infer_dependencies",
    "remove_dependency_cycles",
    "build_dependency_graph",
    "visualize_dependency_graph",
    # Planning
    "select_strategy",
    "resolve_options",
    "PlanBuilder",
    # Execution
    "ExecutionEngine",
    "Replanner",
    "should_replan",
    "format_plan_for_prompt",
    "format_completed_tasks",
    "format_failed_tasks",
    "Summarizer",
    "format_plan_results",
    "fallback_report",
    # Facade
    "TaskPlanner",
    "PlanResult",
    "should_plan",
]
