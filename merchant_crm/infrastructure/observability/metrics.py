"""Prometheus metrics for pipeline conversion, onboarding go-lives, payouts and activity logging"""

from prometheus_client import Counter, Histogram

# Pipeline metrics
stage_transition_counter = Counter(
    "crm_stage_transitions_total",
    "Pipeline stage transitions applied",
    ["from_stage", "to_stage"],
)

rejected_transition_counter = Counter(
    "crm_stage_transitions_rejected_total",
    "Stage transition attempts refused by the transition graph",
    ["reason"],  # InvalidTransition | AlreadyInStage
)

# Onboarding metrics
onboarding_live_counter = Counter(
    "crm_onboarding_live_total",
    "Merchants that went live",
)

# Activity metrics
activity_logged_counter = Counter(
    "crm_activities_logged_total",
    "Merchant activities logged",
    ["type"],
)

# Payout metrics
payout_created_counter = Counter(
    "crm_payouts_created_total",
    "Payout ledger entries created",
    ["type"],  # WON | LIVE
)

payout_duplicate_counter = Counter(
    "crm_payouts_duplicate_total",
    "Payout triggers skipped because the entry already existed",
    ["type"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_transition(from_stage: str, to_stage: str) -> None:
    stage_transition_counter.labels(from_stage=from_stage, to_stage=to_stage).inc()


def record_payout(payout_type: str, created: bool) -> None:
    """Count payout triggers, separating fresh entries from idempotent repeats"""
    if created:
        payout_created_counter.labels(type=payout_type).inc()
    else:
        payout_duplicate_counter.labels(type=payout_type).inc()
