"""
Prometheus metrics for contentledger

Counters and gauges live on a private registry. Batch runs are short-lived,
so the registry is exported to a node-exporter textfile at the end of a
cycle instead of being scraped over HTTP.
"""
from pathlib import Path

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    write_to_textfile,
)

REGISTRY = CollectorRegistry()


# =======================
# CONSOLIDATION METRICS
# =======================

raw_files_total = Counter(
    name="contentledger_raw_files_total",
    documentation="Raw batch files seen by the consolidator",
    labelnames=["status"],  # status: merged, skipped, gated, corrupt
    registry=REGISTRY,
)

records_routed_total = Counter(
    name="contentledger_records_routed_total",
    documentation="Records routed by the consolidator",
    labelnames=["destination"],  # destination: success, reject, drift, superseded, malformed
    registry=REGISTRY,
)

# =======================
# DEDUPE / PROMOTION METRICS
# =======================

duplicates_removed_total = Counter(
    name="contentledger_duplicates_removed_total",
    documentation="Duplicate records discarded",
    labelnames=["ledger", "layer"],  # layer: exact_line, quality
    registry=REGISTRY,
)

promotions_total = Counter(
    name="contentledger_promotions_total",
    documentation="Drift records arbitrated against the canonical ledgers",
    labelnames=["outcome"],  # outcome: promoted, kept_canonical
    registry=REGISTRY,
)

# =======================
# STATE METRICS
# =======================

ledger_records = Gauge(
    name="contentledger_ledger_records",
    documentation="Unique keys per ledger after the last cycle",
    labelnames=["ledger"],
    registry=REGISTRY,
)

domain_bucket_size = Gauge(
    name="contentledger_domain_bucket_size",
    documentation="Size of each domain-set bucket at the last audit",
    labelnames=["scope", "bucket"],
    registry=REGISTRY,
)

invariant_violations_total = Counter(
    name="contentledger_invariant_violations_total",
    documentation="Invariant violations reported by the auditor",
    labelnames=["kind"],
    registry=REGISTRY,
)

stage_duration_seconds = Histogram(
    name="contentledger_stage_duration_seconds",
    documentation="Wall time per pipeline stage",
    labelnames=["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0],
    registry=REGISTRY,
)

cycles_total = Counter(
    name="contentledger_cycles_total",
    documentation="Pipeline cycles by outcome",
    labelnames=["outcome"],  # outcome: passed, recovered, failed
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """Increment a counter; zero increments are skipped"""
    if value:
        counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def record_audit(scope: str, bucket_counts: dict[str, int], violation_kinds: list[str]) -> None:
    """
    Record bucket sizes and violations from one audit pass.

    Args:
        scope: Population scope audited
        bucket_counts: bucket name -> size
        violation_kinds: kinds of failed invariants
    """
    for bucket, size in bucket_counts.items():
        set_gauge(domain_bucket_size, size, scope=scope, bucket=bucket)
    for kind in violation_kinds:
        increment_counter(invariant_violations_total, 1, kind=kind)


def generate_metrics() -> bytes:
    """Metrics in Prometheus text format"""
    return generate_latest(REGISTRY)


def export_textfile(path: Path | str | None) -> None:
    """Write the registry for the node-exporter textfile collector (no-op without a path)"""
    if path is None:
        return
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(path), REGISTRY)
