"""
Prometheus metrics for the settlement service.

Metrics exposed:
- Settlement counters per game type and action (committed / rejected)
- Value paid out and staked, per game type
- Sweeper counters (sessions claimed, refunds, failures)
- Database connection pool gauges
- Scheduler status gauges
"""
from prometheus_client import Counter, Gauge

# Settlement Metrics
settlements_total = Counter(
    "settlements_total",
    "Total committed settlement actions",
    ["game_type", "action"]
)

settlement_rejections_total = Counter(
    "settlement_rejections_total",
    "Total rejected settlement actions",
    ["game_type", "action", "error_type"]
)

value_staked_total = Counter(
    "value_staked_total",
    "Total stake value captured",
    ["game_type"]
)

value_paid_out_total = Counter(
    "value_paid_out_total",
    "Total value credited to winners",
    ["game_type"]
)

# Sweeper Metrics
sweeper_sessions_claimed_total = Counter(
    "sweeper_sessions_claimed_total",
    "Sessions forced to a terminal state by a sweeper",
    ["sweeper"]
)

sweeper_refund_failures_total = Counter(
    "sweeper_refund_failures_total",
    "Individual refund steps that failed during a sweep",
    ["sweeper"]
)

# Database Metrics
db_pool_connections = Gauge(
    "db_pool_connections",
    "Number of database connections in the pool"
)

db_pool_connections_checked_out = Gauge(
    "db_pool_connections_checked_out",
    "Number of checked out database connections"
)

# Scheduler Metrics
scheduler_running = Gauge(
    "scheduler_running",
    "Whether the sweep scheduler is running (1=running, 0=stopped)"
)

scheduler_jobs_total = Gauge(
    "scheduler_jobs_total",
    "Total number of scheduled jobs"
)


def record_settlement(game_type: str, action: str) -> None:
    settlements_total.labels(game_type=game_type, action=action).inc()


def record_rejection(game_type: str, action: str, error_type: str) -> None:
    settlement_rejections_total.labels(
        game_type=game_type, action=action, error_type=error_type
    ).inc()


def record_stake(game_type: str, amount) -> None:
    if amount:
        value_staked_total.labels(game_type=game_type).inc(float(amount))


def record_payout(game_type: str, amount) -> None:
    if amount:
        value_paid_out_total.labels(game_type=game_type).inc(float(amount))


def update_db_pool_metrics() -> None:
    """Refresh pool gauges from the SQLAlchemy engine."""
    from casino_settlement.core.database import get_engine

    pool = get_engine().pool
    # SingletonThreadPool / StaticPool (SQLite) do not expose size()
    if hasattr(pool, "size") and hasattr(pool, "checkedout"):
        db_pool_connections.set(pool.size())
        db_pool_connections_checked_out.set(pool.checkedout())


def update_scheduler_metrics() -> None:
    """Refresh scheduler gauges."""
    from casino_settlement.core.scheduler import get_scheduler

    scheduler = get_scheduler()
    if scheduler and scheduler.running:
        scheduler_running.set(1)
        if scheduler.scheduler:
            scheduler_jobs_total.set(len(scheduler.scheduler.get_jobs()))
    else:
        scheduler_running.set(0)
        scheduler_jobs_total.set(0)
