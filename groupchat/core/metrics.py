"""
Prometheus metrics for the message core.

Covers real-time connections and fan-out, message store operations and
MongoDB calls. HTTP request metrics come from prometheus-fastapi-instrumentator.
"""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# Real-time Metrics
# ============================================================================

realtime_connections_active = Gauge(
    'groupchat_realtime_connections_active',
    'Number of live real-time connections'
)

realtime_room_subscribers = Gauge(
    'groupchat_realtime_room_subscribers',
    'Number of connections subscribed to a group room',
    ['group_id']
)

realtime_disconnections_total = Counter(
    'groupchat_realtime_disconnections_total',
    'Total number of real-time disconnections',
    ['reason']
)

realtime_events_received_total = Counter(
    'groupchat_realtime_events_received_total',
    'Inbound real-time events by name and outcome',
    ['event', 'outcome']
)

realtime_events_broadcast_total = Counter(
    'groupchat_realtime_events_broadcast_total',
    'Total number of events fanned out to a room',
    ['event']
)

realtime_dropped_connections_total = Counter(
    'groupchat_realtime_dropped_connections_total',
    'Connections dropped because their outbound queue overflowed'
)

# ============================================================================
# Message Operation Metrics
# ============================================================================

messages_created_total = Counter(
    'groupchat_messages_created_total',
    'Total number of messages created',
    ['kind']
)

messages_edited_total = Counter(
    'groupchat_messages_edited_total',
    'Total number of message edits'
)

messages_deleted_total = Counter(
    'groupchat_messages_deleted_total',
    'Total number of messages soft-deleted'
)

read_receipts_total = Counter(
    'groupchat_read_receipts_total',
    'Total number of read receipts recorded'
)

message_operation_duration_seconds = Histogram(
    'groupchat_message_operation_duration_seconds',
    'Duration of message operations in seconds',
    ['operation'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

message_operation_errors_total = Counter(
    'groupchat_message_operation_errors_total',
    'Total number of message operation errors',
    ['operation', 'error_type']
)

# ============================================================================
# MongoDB Operation Metrics
# ============================================================================

mongodb_operations_total = Counter(
    'groupchat_mongodb_operations_total',
    'Total number of MongoDB operations',
    ['operation', 'status']
)
