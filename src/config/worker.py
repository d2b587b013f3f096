from celery import Celery
from celery.signals import task_received, worker_process_init, worker_process_shutdown
import logging as log
from kombu import Queue

from config.app_vars import (
    ABANDONED_ATTEMPT_CHECK_SECONDS,
    RABBIT_URL,
    TRACKING_POLL_SECONDS,
    WAYBILL_STOCK_CHECK_SECONDS,
)

cel_app = Celery("shipping-tasks", broker=RABBIT_URL, include=["tasks"])

cel_app.conf.task_queues = [
    Queue(
        "shipping_high_priority_queue",
        exchange="shipping_high_priority_queue_exchange",
        routing_key="shipping_high_priority_queue",
    ),
    Queue(
        "shipping-queue", exchange="shipping_queue_exchange", routing_key="shipping_queue"
    ),
]

cel_app.conf.task_default_queue = "shipping-queue"

cel_app.conf.beat_schedule = {
    "reconcile-open-shipments": {
        "task": "tasks.tracking.reconcile_open_shipments",
        "schedule": TRACKING_POLL_SECONDS,
        "args": (),
        "options": {"queue": "shipping-queue"},
    },
    "replenish-waybill-stock": {
        "task": "tasks.waybill.replenish_stock",
        "schedule": WAYBILL_STOCK_CHECK_SECONDS,
        "args": (),
        "options": {"queue": "shipping-queue"},
    },
    "expire-abandoned-attempts": {
        "task": "tasks.shipping.expire_abandoned_attempts",
        "schedule": ABANDONED_ATTEMPT_CHECK_SECONDS,
        "args": (),
        "options": {"queue": "shipping-queue"},
    },
}


@worker_process_init.connect
def on_worker_init(**kwargs):
    from config.database import init_db

    init_db()


@worker_process_shutdown.connect
def on_worker_shutdown(**kwargs):
    from config.database import close_db

    close_db()


@task_received.connect
def on_task_received(sender=None, request=None, **kwargs):
    log.info(f"Task received from {request.name}")
