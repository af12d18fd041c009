"""
Prometheus metrics for the upload handling layer using prometheus-client.

All collectors are module level singletons registered against the default
registry so a host application's /metrics endpoint exposes them without
extra wiring.

Key Features:
- Registered part counter by array/single field kind
- Validation outcome counter labelled by result and failure reason
- Move counter and duration histogram labelled by outcome
- Aggregate ceiling abort counter and received byte counter
- Error counter shared by the exception hierarchy
"""

from prometheus_client import Counter, Histogram

upload_parts_registered_total = Counter(
    'bodyparser_upload_parts_registered_total',
    'Total number of multipart file parts registered',
    ['field_kind']
)

upload_bytes_received_total = Counter(
    'bodyparser_upload_bytes_received_total',
    'Total number of file bytes accepted into temporary storage'
)

upload_ceiling_aborts_total = Counter(
    'bodyparser_upload_ceiling_aborts_total',
    'Total number of requests aborted for exceeding the aggregate size ceiling'
)

upload_validation_total = Counter(
    'bodyparser_upload_validation_total',
    'Total file validation attempts by result',
    ['validator', 'result', 'reason']
)

upload_moves_total = Counter(
    'bodyparser_upload_moves_total',
    'Total number of move attempts by status',
    ['status']
)

upload_move_duration_seconds = Histogram(
    'bodyparser_upload_move_duration_seconds',
    'Time spent moving uploaded files to their destination',
    ['status'],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)
)

upload_errors_total = Counter(
    'bodyparser_upload_errors_total',
    'Total number of upload layer errors by type',
    ['error_type', 'error_category']
)

__all__ = [
    'upload_parts_registered_total',
    'upload_bytes_received_total',
    'upload_ceiling_aborts_total',
    'upload_validation_total',
    'upload_moves_total',
    'upload_move_duration_seconds',
    'upload_errors_total',
]
