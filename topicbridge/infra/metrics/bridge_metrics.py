# =============================================================================
# File: topicbridge/infra/metrics/bridge_metrics.py
# Description: Prometheus metrics for the bridge engine
# =============================================================================
# Metrics for:
#   - Queue items (outcomes, attempts, latency, queue depth)
#   - Topics (created, renamed, duplicates)
#   - Media pipeline (bytes, transcodes, rejections)
#   - Webhook ingress (requests, dedup, security blocks)
# =============================================================================

from prometheus_client import Counter, Histogram, Gauge

# =============================================================================
# Delivery Metrics
# =============================================================================

bridge_items_total = Counter(
    'bridge_items_total',
    'Queue items processed',
    ['direction', 'kind', 'outcome']  # to_destination/to_source, text/image/..., delivered/notice/suspended/dropped/skipped
)

bridge_retries_total = Counter(
    'bridge_retries_total',
    'Transient failures that were retried',
    ['direction']
)

bridge_delivery_latency_seconds = Histogram(
    'bridge_delivery_latency_seconds',
    'Time from enqueue to final outcome',
    ['direction'],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

bridge_active_queues = Gauge(
    'bridge_active_queues',
    'Per-conversation queues with a running worker'
)

bridge_duplicates_total = Counter(
    'bridge_duplicates_total',
    'Inbound events dropped as replays',
    ['direction']
)

# =============================================================================
# Topic Metrics
# =============================================================================

bridge_topics_created_total = Counter(
    'bridge_topics_created_total',
    'Destination topics created',
    ['chat_type']  # private, group
)

bridge_topic_renames_total = Counter(
    'bridge_topic_renames_total',
    'Topic rename attempts on contact name drift',
    ['status']  # success, error
)

bridge_invariant_violations_total = Counter(
    'bridge_invariant_violations_total',
    'Invariant violations detected and resolved',
    ['kind']  # duplicate_topic
)

bridge_suspended_conversations = Gauge(
    'bridge_suspended_conversations',
    'Conversations currently suspended'
)

# =============================================================================
# Media Metrics
# =============================================================================

bridge_media_bytes_total = Counter(
    'bridge_media_bytes_total',
    'Media bytes fetched',
    ['direction', 'kind']
)

bridge_media_rejected_total = Counter(
    'bridge_media_rejected_total',
    'Media rejected before or during transfer',
    ['kind', 'reason']  # too_large, transcode_failed
)

bridge_transcode_seconds = Histogram(
    'bridge_transcode_seconds',
    'Transcoding time',
    ['target'],  # voice, video_note, sticker_png
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# =============================================================================
# Webhook Metrics
# =============================================================================

bridge_webhook_requests_total = Counter(
    'bridge_webhook_requests_total',
    'Webhook requests received',
    ['status']  # accepted, ignored, invalid_secret, invalid_ip, error
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_item_outcome(direction: str, kind: str, outcome: str, latency_seconds: float) -> None:
    """Record the final outcome of one queue item."""
    bridge_items_total.labels(direction=direction, kind=kind, outcome=outcome).inc()
    bridge_delivery_latency_seconds.labels(direction=direction).observe(latency_seconds)


def record_retry(direction: str) -> None:
    bridge_retries_total.labels(direction=direction).inc()


def record_duplicate(direction: str) -> None:
    bridge_duplicates_total.labels(direction=direction).inc()


def record_topic_created(chat_type: str) -> None:
    bridge_topics_created_total.labels(chat_type=chat_type).inc()


def record_topic_rename(success: bool) -> None:
    bridge_topic_renames_total.labels(status="success" if success else "error").inc()


def record_invariant_violation(kind: str) -> None:
    bridge_invariant_violations_total.labels(kind=kind).inc()


def record_media_bytes(direction: str, kind: str, size: int) -> None:
    bridge_media_bytes_total.labels(direction=direction, kind=kind).inc(size)


def record_media_rejected(kind: str, reason: str) -> None:
    bridge_media_rejected_total.labels(kind=kind, reason=reason).inc()


def record_webhook_request(status: str) -> None:
    bridge_webhook_requests_total.labels(status=status).inc()
