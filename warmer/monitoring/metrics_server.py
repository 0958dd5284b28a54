from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Warm-up request metrics
# -------------------------

WARMUP_REQUESTS = Counter(
    "warmer_requests_total",
    "Warm-up requests by outcome",
    ["outcome"],
)

WARMUP_TTFB = Histogram(
    "warmer_request_ttfb_seconds",
    "Time to first byte of warm-up requests",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0),
)

CACHE_HITS = Counter(
    "warmer_already_warm_total",
    "Warm-up requests answered from cache",
)

# -------------------------
# Session metrics
# -------------------------

SESSION_BOOTSTRAPS = Counter(
    "warmer_session_bootstraps_total",
    "Sessions created from scratch",
    ["kind"],
)

SESSION_FAILURES = Counter(
    "warmer_session_failures_total",
    "Failed session bootstraps",
    ["kind"],
)

# -------------------------
# Throttling / worker metrics
# -------------------------

THROTTLE_CONCURRENCY = Gauge(
    "warmer_throttle_concurrency",
    "Concurrency suggested by the throttler",
)

THROTTLE_DELAY = Gauge(
    "warmer_throttle_delay_seconds",
    "Inter-batch delay suggested by the throttler",
)

EMERGENCY_PAUSES = Counter(
    "warmer_emergency_pauses_total",
    "Emergency pauses taken after timeouts or unavailable responses",
)

BATCHES_PROCESSED = Counter(
    "warmer_batches_total",
    "Queue batches processed",
)

# -------------------------
# Queue metrics
# -------------------------

QUEUE_PENDING = Gauge(
    "warmer_queue_pending",
    "Number of jobs eligible for leasing"
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp refuses a content type that carries a charset
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )


async def start_metrics_server(port=8000):
    app = web.Application()
    app.router.add_get("/metrics", metrics_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()

    return runner, site
