"""
Shared Prometheus metrics registry.

The alarm engine increments these counters/gauges.
Use prometheus_client.generate_latest() in the /metrics handler.
"""

from prometheus_client import Counter, Gauge, Histogram

# Rule evaluation
alarm_rules_evaluated_total = Counter(
    "lifebox_alarm_rules_evaluated_total",
    "Total alarm rule evaluations by outcome",
    ["status"],  # skipped | not_matched | pending | suppressed | triggered | failed
)

alarm_events_created_total = Counter(
    "lifebox_alarm_events_created_total",
    "Total alarm events recorded",
    ["severity"],
)

alarm_rule_errors_total = Counter(
    "lifebox_alarm_rule_errors_total",
    "Total per-rule pipeline failures",
)

alarm_rule_load_errors_total = Counter(
    "lifebox_alarm_rule_load_errors_total",
    "Total failures to load the rule set for a device",
)

# Reaction dispatch
alarm_reactions_total = Counter(
    "lifebox_alarm_reactions_total",
    "Total reaction executions",
    ["reaction_type", "result"],  # ok | failed
)

notification_deliveries_total = Counter(
    "lifebox_notification_deliveries_total",
    "Total per-recipient notification attempts",
    ["channel", "result"],  # sent | failed
)

# Debounce cache
alarm_debounce_entries = Gauge(
    "lifebox_alarm_debounce_entries",
    "Current number of pending debounce entries",
)

alarm_debounce_evicted_total = Counter(
    "lifebox_alarm_debounce_evicted_total",
    "Total debounce entries removed by the janitor",
)

alarm_evaluation_duration_seconds = Histogram(
    "lifebox_alarm_evaluation_duration_seconds",
    "Duration of one telemetry evaluation in seconds",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
