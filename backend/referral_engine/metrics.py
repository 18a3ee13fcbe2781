"""Prometheus metrics for the referral program."""

from prometheus_client import Counter

REFERRALS_ATTACHED = Counter(
    "referrals_attached_total",
    "Referrals created from a validated code on a new booking",
)
REFERRALS_COMPLETED = Counter(
    "referrals_completed_total",
    "Referrals advanced from pending to completed",
)
REFERRALS_CREDITED = Counter(
    "referrals_credited_total",
    "Referrals credited to the referrer",
    ["tier"],
)
REFERRAL_CREDIT_AWARDED_CENTS = Counter(
    "referral_credit_awarded_cents_total",
    "Store credit awarded to referrers, in cents",
)
FRAUD_REJECTIONS = Counter(
    "referral_fraud_rejections_total",
    "Referral codes rejected by fraud screening",
    ["severity"],
)
REFERRAL_CODES_ISSUED = Counter(
    "referral_codes_issued_total",
    "Referral codes issued to customers",
)
NOTIFICATION_FAILURES = Counter(
    "referral_notification_failures_total",
    "Referral notifications that failed to send",
    ["kind"],
)

# Scheduler job counters
SCHEDULER_JOB_RUNS = Counter(
    "referral_scheduler_job_runs_total",
    "Total scheduler job executions",
    ["job_name", "status"],
)
