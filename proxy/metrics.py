from prometheus_client import Counter, Gauge

UPSTREAM_CALLS = Counter(
    'proxy_upstream_calls_total',
    'Upstream daemon and pool calls',
    ['method', 'outcome']
)
FALLBACKS = Counter(
    'proxy_fallbacks_total',
    'Operations answered by the live upstream instead of the local store',
    ['operation', 'reason']
)
AGGREGATE_SAMPLES = Gauge(
    'proxy_aggregate_samples',
    'Usable samples in the last fan-out round',
    ['metric']
)
AGGREGATE_CONFIDENCE = Gauge(
    'proxy_aggregate_confidence',
    'Share of samples agreeing with the winning value in the last fan-out round',
    ['metric']
)
