"""
Prometheus metrics configuration for the Legal MCP Server.

Defines custom metrics for sessions, protocol traffic, tools and analysis runs.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "legalmcp"


# ============================================================================
# Session Metrics
# ============================================================================

sessions_active = Gauge(
    f"{NAMESPACE}_sessions_active",
    "Number of currently registered sessions",
)

sessions_created_total = Counter(
    f"{NAMESPACE}_sessions_created_total",
    "Total number of sessions created",
)

sessions_closed_total = Counter(
    f"{NAMESPACE}_sessions_closed_total",
    "Total number of sessions closed",
    ["reason"],  # "client", "transport", "idle", "shutdown", "initialize_failed"
)

session_close_failures_total = Counter(
    f"{NAMESPACE}_session_close_failures_total",
    "Total number of session closes whose resource release raised",
)


# ============================================================================
# Protocol Metrics
# ============================================================================

rpc_requests_total = Counter(
    f"{NAMESPACE}_rpc_requests_total",
    "Total number of JSON-RPC messages handled",
    ["method", "status"],  # status: "success", "error", "cancelled"
)

routing_rejections_total = Counter(
    f"{NAMESPACE}_routing_rejections_total",
    "Total number of requests rejected before reaching a session",
    ["reason"],  # "missing_session", "unknown_session"
)


# ============================================================================
# Tool Metrics
# ============================================================================

tool_calls_total = Counter(
    f"{NAMESPACE}_tool_calls_total",
    "Total number of tool calls executed",
    ["tool_name", "status"],  # status: "success", "error", "cancelled"
)

tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_tool_call_duration_seconds",
    "Tool call execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)


# ============================================================================
# Analysis Metrics
# ============================================================================

analysis_runs_total = Counter(
    f"{NAMESPACE}_analysis_runs_total",
    "Total number of analysis runs",
    ["status"],  # "success", "error", "cancelled"
)

analysis_duration_seconds = Histogram(
    f"{NAMESPACE}_analysis_duration_seconds",
    "Analysis run duration in seconds",
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

progress_notifications_total = Counter(
    f"{NAMESPACE}_progress_notifications_total",
    "Total number of progress notification delivery attempts",
    ["status"],  # "delivered", "dropped", "failed"
)
