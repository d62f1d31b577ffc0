"""Prometheus metrics for notification delivery.

Usage:
    from notification_service.features.notifications.metrics import (
        notification_delivered_total,
    )

    notification_delivered_total.labels(channel="email", status="sent").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Lifecycle
# =============================================================================

notification_created_total = Counter(
    "notification_created_total",
    "Total number of notifications created",
    labelnames=["kind", "priority"],
)

notification_scheduled_total = Counter(
    "notification_scheduled_total",
    "Total number of notifications scheduled for later delivery",
    labelnames=["kind"],
)

notification_cancelled_total = Counter(
    "notification_cancelled_total",
    "Total number of scheduled notifications cancelled",
)

# =============================================================================
# Delivery
# =============================================================================

notification_delivered_total = Counter(
    "notification_delivered_total",
    "Notification channel attempts by channel and resulting status",
    labelnames=["channel", "status"],
)
"""
Labels:
    channel: email, sms, push, in_app
    status: delivered, sent, failed, skipped, unavailable
"""

notification_delivery_duration_seconds = Histogram(
    "notification_delivery_duration_seconds",
    "Channel backend call duration in seconds",
    labelnames=["channel"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

notification_topic_sent_total = Counter(
    "notification_topic_sent_total",
    "Topic broadcasts by result",
    labelnames=["status"],
)

notification_bulk_recipients_total = Counter(
    "notification_bulk_recipients_total",
    "Recipients processed by bulk sends",
    labelnames=["status"],
)

# =============================================================================
# Background jobs
# =============================================================================

notification_job_runs_total = Counter(
    "notification_job_runs_total",
    "Background job runs by job and outcome",
    labelnames=["job", "status"],
)

notification_job_items_total = Counter(
    "notification_job_items_total",
    "Rows handled by background jobs",
    labelnames=["job", "result"],
)

notification_retry_attempts_total = Counter(
    "notification_retry_attempts_total",
    "Automatic retry attempts by outcome",
    labelnames=["status"],
)

# =============================================================================
# Live connections
# =============================================================================

websocket_connections_active = Gauge(
    "notification_websocket_connections_active",
    "Registered live notification connections",
)

websocket_messages_total = Counter(
    "notification_websocket_messages_total",
    "Live connection frames by direction and type",
    labelnames=["direction", "type"],
)

websocket_connections_rejected_total = Counter(
    "notification_websocket_connections_rejected_total",
    "Live connections rejected before registration",
    labelnames=["reason"],
)
