"""Agent-driven flow editing gated by change validation."""

from flowgraph.autopilot.parser import FlowPlan, ParsedResponse, ParseKind, parse_agent_response
from flowgraph.autopilot.session import (
    AutopilotOutcome,
    AutopilotSession,
    ChangeProposer,
    LLMChangeProposer,
    build_system_prompt,
)

__all__ = [
    "AutopilotOutcome",
    "AutopilotSession",
    "ChangeProposer",
    "FlowPlan",
    "LLMChangeProposer",
    "ParseKind",
    "ParsedResponse",
    "build_system_prompt",
    "parse_agent_response",
]
