"""
Per-endpoint traffic, revenue and latency metrics.

Counters are monotonic for the process lifetime. Response times keep a
bounded window of recent samples per endpoint and are exposed as cumulative
histogram buckets through a prometheus_client collector on a per-instance
registry.
"""

import threading
from collections import defaultdict, deque
from decimal import Decimal
from typing import Deque, Dict, Iterator, List, Tuple, Union

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, HistogramMetricFamily, Metric
from prometheus_client.utils import floatToGoString

DEFAULT_BUCKETS: Tuple[float, ...] = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

METRIC_PREFIX = "arithmos"


class MetricsCollector:
    """
    Thread-safe metrics store.

    Each metric family has its own lock so that recording a request does
    not contend with recording a duration. The collector registers itself
    on its own registry, so several instances never share samples.
    """

    def __init__(self, window_size: int = 1000, buckets: Tuple[float, ...] = DEFAULT_BUCKETS):
        """
        Initialize collector.

        Args:
            window_size: Number of most recent duration samples kept per endpoint
            buckets: Upper bounds of the histogram buckets, ascending
        """
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        if list(buckets) != sorted(buckets):
            raise ValueError("buckets must be ascending")

        self.window_size = window_size
        self.buckets = tuple(buckets)

        self._requests: Dict[Tuple[str, str], int] = defaultdict(int)
        self._requests_lock = threading.Lock()

        self._payments: Dict[str, int] = defaultdict(int)
        self._revenue: Dict[str, Decimal] = defaultdict(Decimal)
        self._payments_lock = threading.Lock()

        self._durations: Dict[str, Deque[float]] = {}
        self._durations_lock = threading.Lock()

        self.registry = CollectorRegistry(auto_describe=False)
        self.registry.register(self)

    def record_request(self, endpoint: str, status_class: Union[str, int]) -> None:
        with self._requests_lock:
            self._requests[(endpoint, str(status_class))] += 1

    def record_payment(self, endpoint: str, amount: Union[str, Decimal]) -> None:
        """
        Count an accepted payment and add its amount to the endpoint revenue.

        Args:
            endpoint: Route path that accepted the payment
            amount: Accepted amount, as declared in the payment requirement
        """
        value = Decimal(str(amount))
        with self._payments_lock:
            self._payments[endpoint] += 1
            self._revenue[endpoint] += value

    def record_duration(self, endpoint: str, seconds: float) -> None:
        with self._durations_lock:
            series = self._durations.get(endpoint)
            if series is None:
                series = deque(maxlen=self.window_size)
                self._durations[endpoint] = series
            series.append(seconds)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def request_counts(self) -> Dict[Tuple[str, str], int]:
        with self._requests_lock:
            return dict(self._requests)

    def payment_totals(self) -> Tuple[Dict[str, int], Dict[str, Decimal]]:
        with self._payments_lock:
            return dict(self._payments), dict(self._revenue)

    def duration_samples(self) -> Dict[str, List[float]]:
        with self._durations_lock:
            return {endpoint: list(series) for endpoint, series in self._durations.items()}

    # ------------------------------------------------------------------
    # Exposition
    # ------------------------------------------------------------------

    def collect(self) -> Iterator[Metric]:
        """
        Build metric families from per-family snapshots.

        Output is consistent per family but not atomic across families.
        """
        requests = self.request_counts()
        payments, revenue = self.payment_totals()
        durations = self.duration_samples()

        family = CounterMetricFamily(
            f"{METRIC_PREFIX}_requests",
            "Total requests by endpoint and status class",
            labels=["endpoint", "status"],
        )
        for (endpoint, status), count in sorted(requests.items()):
            family.add_metric([endpoint, status], count)
        yield family

        per_endpoint: Dict[str, int] = defaultdict(int)
        for (endpoint, _), count in requests.items():
            per_endpoint[endpoint] += count

        family = CounterMetricFamily(
            f"{METRIC_PREFIX}_endpoint_requests",
            "Total requests by endpoint",
            labels=["endpoint"],
        )
        for endpoint, count in sorted(per_endpoint.items()):
            family.add_metric([endpoint], count)
        yield family

        family = CounterMetricFamily(
            f"{METRIC_PREFIX}_payments",
            "Accepted payments by endpoint",
            labels=["endpoint"],
        )
        for endpoint, count in sorted(payments.items()):
            family.add_metric([endpoint], count)
        yield family

        family = CounterMetricFamily(
            f"{METRIC_PREFIX}_revenue",
            "Accepted payment amount by endpoint",
            labels=["endpoint"],
        )
        for endpoint, amount in sorted(revenue.items()):
            family.add_metric([endpoint], float(amount))
        yield family

        family = HistogramMetricFamily(
            f"{METRIC_PREFIX}_response_time_seconds",
            f"Response time over the most recent {self.window_size} requests",
            labels=["endpoint"],
        )
        for endpoint, samples in sorted(durations.items()):
            buckets = [
                (floatToGoString(bound), sum(1 for s in samples if s <= bound))
                for bound in self.buckets
            ]
            buckets.append(("+Inf", len(samples)))
            family.add_metric([endpoint], buckets, sum(samples))
        yield family

    def render(self) -> str:
        """Render all metrics in the Prometheus text format."""
        return generate_latest(self.registry).decode("utf-8")


__all__ = ["MetricsCollector", "DEFAULT_BUCKETS"]
