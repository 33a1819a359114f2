# /chatflow/utils/metrics.py

from prometheus_client import Counter, Gauge

# Prometheus metrics for the flow execution core.
# Centralizing them here makes them easy to find and manage.

# Rule / condition evaluation
rule_evaluations_counter = Counter('chatflow_rule_evaluations_total', 'Condition rules evaluated', ['rule_type', 'result'])
rule_evaluation_errors_counter = Counter('chatflow_rule_evaluation_errors_total', 'Rule evaluations that degraded to false', ['rule_type'])

# Transition resolution
branch_resolutions_counter = Counter('chatflow_branch_resolutions_total', 'Condition node branch resolutions', ['outcome'])
edge_resolutions_counter = Counter('chatflow_edge_resolutions_total', 'Outgoing edge resolutions', ['outcome'])

# Delay scheduler
timer_transitions_counter = Counter('chatflow_timer_transitions_total', 'Delay timer state transitions', ['transition'])
active_timers_gauge = Gauge('chatflow_active_timers', 'Delay timers currently pending or armed')
