"""
Prometheus metrics for the pgcopy sink.

Objects live in the global REGISTRY; expose them with
``prometheus_client.start_http_server`` in the hosting process.
"""

from prometheus_client import Counter, Histogram

BATCHES_TOTAL = Counter(
    "pgcopy_batches_total",
    "Batches handed to the loader, by outcome",
    ["table", "outcome"],  # copied | isolated
)

ROWS_WRITTEN_TOTAL = Counter(
    "pgcopy_rows_written_total",
    "Rows committed to the target table",
    ["table", "mode"],  # batch | single
)

ERROR_RECORDS_TOTAL = Counter(
    "pgcopy_error_records_total",
    "Records that failed on their own, by error-table outcome",
    ["table", "outcome"],  # stored | dropped
)

COPY_LATENCY = Histogram(
    "pgcopy_copy_latency_seconds",
    "Latency of a single COPY call",
    ["table"],
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

