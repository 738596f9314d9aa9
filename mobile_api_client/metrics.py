from typing import Dict, Any, List, Optional
from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest

class MetricsCollector:
    def __init__(self, client_id: str, registry: Optional[CollectorRegistry] = None):
        self.client_id = client_id
        # Each client gets its own registry so several can live in one process
        self.registry = registry or CollectorRegistry()

        # Prometheus metrics
        self.request_count = Counter(
            'mobile_client_requests_total',
            'Total requests sent by the client',
            ['client', 'method', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'mobile_client_request_duration_seconds',
            'Request duration in seconds',
            ['client', 'method'],
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'mobile_client_cache_hits_total',
            'Total cache hits',
            ['client'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'mobile_client_cache_misses_total',
            'Total cache misses',
            ['client'],
            registry=self.registry
        )

        self.retries_total = Counter(
            'mobile_client_retries_total',
            'Total retry attempts after network failures',
            ['client', 'method'],
            registry=self.registry
        )

        self.token_refreshes = Counter(
            'mobile_client_token_refreshes_total',
            'Token refresh outcomes',
            ['client', 'outcome'],
            registry=self.registry
        )

        self._metrics: Dict[str, Any] = {}
        self._latencies: List[float] = []
        self.reset()

    def record_success(self, method: str, latency: float):
        """Record successful request"""
        self._metrics["requests_total"] += 1
        self._metrics["requests_success"] += 1
        self._latencies.append(latency)
        # Keep only last 1000 latencies for percentile calculation
        if len(self._latencies) > 1000:
            self._latencies.pop(0)

        self.request_count.labels(client=self.client_id, method=method, status="success").inc()
        self.request_duration.labels(client=self.client_id, method=method).observe(latency)

    def record_failure(self, method: str, error: str):
        """Record failed request"""
        self._metrics["requests_total"] += 1
        self._metrics["requests_failed"] += 1
        self._metrics["last_error"] = error

        self.request_count.labels(client=self.client_id, method=method, status="failure").inc()

    def record_cache_hit(self):
        self._metrics["cache_hits"] += 1
        self.cache_hits.labels(client=self.client_id).inc()

    def record_cache_miss(self):
        self._metrics["cache_misses"] += 1
        self.cache_misses.labels(client=self.client_id).inc()

    def record_retry(self, method: str):
        """Record retry attempt"""
        self._metrics["retries_total"] += 1
        self.retries_total.labels(client=self.client_id, method=method).inc()

    def record_token_refresh(self, succeeded: bool):
        key = "token_refreshes" if succeeded else "token_refresh_failures"
        self._metrics[key] += 1
        self.token_refreshes.labels(
            client=self.client_id,
            outcome="success" if succeeded else "failure"
        ).inc()

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics snapshot"""
        latencies = sorted(self._latencies)
        total_requests = self._metrics["requests_total"]

        metrics = self._metrics.copy()

        if latencies:
            metrics.update({
                "latency_p50": latencies[int(len(latencies) * 0.5)],
                "latency_p95": latencies[int(len(latencies) * 0.95)],
                "latency_p99": latencies[int(len(latencies) * 0.99)],
                "latency_avg": sum(latencies) / len(latencies),
            })

        if total_requests > 0:
            metrics.update({
                "success_rate": self._metrics["requests_success"] / total_requests,
                "error_rate": self._metrics["requests_failed"] / total_requests,
            })

        if self._metrics["cache_hits"] + self._metrics["cache_misses"] > 0:
            metrics["cache_hit_rate"] = (
                self._metrics["cache_hits"] /
                (self._metrics["cache_hits"] + self._metrics["cache_misses"])
            )

        return metrics

    def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus format"""
        return generate_latest(self.registry).decode("utf-8")

    def reset(self):
        """Reset the snapshot counters (Prometheus series are cumulative)"""
        self._metrics.clear()
        self._latencies.clear()
        self._metrics.update({
            "requests_total": 0,
            "requests_success": 0,
            "requests_failed": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "retries_total": 0,
            "token_refreshes": 0,
            "token_refresh_failures": 0,
            "last_error": None,
        })
