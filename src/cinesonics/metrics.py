from __future__ import annotations

from prometheus_client import Counter, Histogram


GENERATE_REQUESTS = Counter(
    "cinesonics_generate_requests_total", "Generation requests by outcome", ["outcome"]
)
UPSTREAM_LATENCY = Histogram(
    "cinesonics_upstream_latency_ms",
    "Upstream call latency in ms",
    ["call"],
    buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000),
)
COVER_REQUESTS = Counter(
    "cinesonics_cover_requests_total", "Cover redemptions by outcome", ["outcome"]
)
VAULT_SWEPT = Counter(
    "cinesonics_vault_swept_total", "Expired cover tokens removed by the sweeper"
)
