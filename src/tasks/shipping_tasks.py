from config.worker import cel_app
from utils.carrier import get_carrier_client
from utils.shipping import ShipmentOrchestrator


@cel_app.task(
    name="tasks.shipping.expire_abandoned_attempts",
    retry_kwargs={"max_retries": 3, "countdown": 5},
    ack_late=True,
)
def expire_abandoned_attempts():
    return ShipmentOrchestrator(get_carrier_client()).expire_abandoned()
