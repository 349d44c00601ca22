"""Metrics for url-reader."""

from prometheus_client import Counter, Histogram

DEFAULT_BUCKETS_EXTERNAL_API = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

bitbucket_server_request = Counter(
    # Following naming convention (url_reader_external_api_<component>_requests_total)
    "url_reader_external_api_bitbucket_server_requests_total",
    "Total number of Bitbucket Server API requests",
    ["method", "verb"],
)

bitbucket_server_request_duration = Histogram(
    "url_reader_external_api_bitbucket_server_request_duration_seconds",
    "Bitbucket Server API request duration in seconds",
    ["method", "verb"],
    buckets=DEFAULT_BUCKETS_EXTERNAL_API,
)

bitbucket_server_request_errors = Counter(
    "url_reader_external_api_bitbucket_server_request_errors_total",
    "Total number of failed Bitbucket Server API requests",
    ["method", "verb"],
)
