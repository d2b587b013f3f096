import json
import logging as log
import time
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.app_vars import (
    CARRIER_API_TOKEN,
    CARRIER_BACKOFF_SECONDS,
    CARRIER_BASE_URLS,
    CARRIER_MAX_ATTEMPTS,
    CARRIER_RATE_LIMIT_COOLDOWN,
    CARRIER_TIMEOUT_SECONDS,
)
from serializers.carrier_serializer import (
    CreateShipmentResponse,
    EditResponse,
    PickupResponse,
    ServiceabilityResponse,
    SingleWaybill,
    TrackingResponse,
    WaybillBatch,
)
from utils.errors import (
    AuthError,
    CarrierDecodeError,
    CarrierError,
    CarrierTimeout,
    CarrierValidationError,
    ConfigurationError,
    DeadlineExceeded,
    RateLimited,
    Transient,
)

M = TypeVar("M", bound=BaseModel)

BULK_WAYBILL_PATH = "/waybill/api/bulk/json/"
SINGLE_WAYBILL_PATH = "/waybill/api/fetch/json/"
CREATE_SHIPMENT_PATH = "/api/cmu/create.json"
PICKUP_PATH = "/fm/request/new/"
TRACKING_PATH = "/api/v1/packages/json/"
EDIT_PATH = "/api/p/edit"
SERVICEABILITY_PATH = "/c/api/pin-codes/json/"

PLACEHOLDER_TOKENS = {"", "your-delhivery-auth-token-here"}


class CarrierClient:
    """HTTP client for the Delhivery API.

    ``send`` retries one logical request across the configured endpoints
    with tenacity: up to ``max_attempts`` per endpoint with exponential
    backoff between attempts. Moving on to the next endpoint only waits
    when the previous failure was a timeout. 401 and other 4xx responses
    are terminal; 429, 5xx, timeouts and connection errors are retried.
    """

    def __init__(
        self,
        token: str = CARRIER_API_TOKEN,
        base_urls: Optional[List[str]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = CARRIER_TIMEOUT_SECONDS,
        max_attempts: int = CARRIER_MAX_ATTEMPTS,
        backoff: float = CARRIER_BACKOFF_SECONDS,
        rate_limit_cooldown: float = CARRIER_RATE_LIMIT_COOLDOWN,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token = token or ""
        self.base_urls = list(base_urls or CARRIER_BASE_URLS)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._backoff = wait_exponential(multiplier=backoff)
        self.rate_limit_cooldown = rate_limit_cooldown
        self._sleep = sleep
        self._clock = clock

    def is_configured(self) -> bool:
        return self.token not in PLACEHOLDER_TOKENS and bool(self.base_urls)

    def status(self) -> Dict[str, Any]:
        return {
            "configured": self.is_configured(),
            "base_urls": self.base_urls,
            "has_token": bool(self.token),
        }

    def send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        deadline: Optional[float] = None,
    ) -> Any:
        if not self.is_configured():
            raise ConfigurationError("Carrier API token is not configured")

        last_error: Optional[CarrierError] = None
        for index, base_url in enumerate(self.base_urls):
            if index > 0 and isinstance(last_error, CarrierTimeout):
                self._wait(self.backoff, deadline)

            def log_failure(retry_state: RetryCallState, base_url=base_url):
                log.warning(
                    f"Carrier {method} {path} failed on {base_url} "
                    f"(attempt {retry_state.attempt_number}/{self.max_attempts}): "
                    f"{retry_state.outcome.exception().message}"
                )

            retrying = Retrying(
                stop=stop_after_attempt(self.max_attempts),
                retry=retry_if_exception_type((Transient, RateLimited)),
                wait=self._retry_wait,
                sleep=lambda seconds: self._wait(seconds, deadline),
                after=log_failure,
                reraise=True,
            )
            try:
                return retrying(
                    self._attempt, method, base_url + path, params, data, json_body, deadline
                )
            except (Transient, RateLimited) as e:
                last_error = e
            log.info(f"Carrier endpoint {base_url} exhausted for {method} {path}")

        log.error(f"Carrier {method} {path} failed on every endpoint: {last_error.message}")
        raise last_error

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        if isinstance(retry_state.outcome.exception(), RateLimited):
            return self.rate_limit_cooldown
        return self._backoff(retry_state)

    def _wait(self, seconds: float, deadline: Optional[float]) -> None:
        if deadline is not None and self._clock() + seconds >= deadline:
            raise DeadlineExceeded("Deadline reached while waiting to retry the carrier")
        if seconds > 0:
            self._sleep(seconds)

    def _attempt_timeout(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.timeout
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise DeadlineExceeded("Deadline reached before calling the carrier")
        return min(self.timeout, remaining)

    def _attempt(self, method, url, params, data, json_body, deadline) -> Any:
        timeout = self._attempt_timeout(deadline)
        headers = {
            "Authorization": f"Token {self.token}",
            "Accept": "application/json",
        }
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=data,
                json=json_body,
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise CarrierTimeout(f"Carrier request timed out after {timeout:.1f}s") from e
        except requests.ConnectionError as e:
            raise Transient(f"Could not reach carrier: {e}") from e
        return self._classify(response)

    def _classify(self, response: requests.Response) -> Any:
        status = response.status_code
        if 200 <= status < 300:
            try:
                return response.json()
            except ValueError as e:
                raise CarrierDecodeError(
                    "Carrier returned a non-JSON body", remark=response.text[:500]
                ) from e

        body = response.text[:2000]
        if status == 401:
            raise AuthError(
                "Carrier rejected the token or does not recognise the resource",
                remark=body,
            )
        if status == 429:
            raise RateLimited("Carrier rate limit hit", remark=body)
        if 400 <= status < 500:
            raise CarrierValidationError(f"Carrier rejected the request ({status})", remark=body)
        raise Transient(f"Carrier returned {status}", remark=body)

    @staticmethod
    def _decode(model: Type[M], body: Any) -> M:
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise CarrierDecodeError(
                f"Unexpected {model.__name__} response from carrier",
                remark=str(e),
                response=body,
            ) from e

    def generate_waybills(self, count: int, deadline: Optional[float] = None) -> List[str]:
        body = self.send("POST", BULK_WAYBILL_PATH, data={"count": count}, deadline=deadline)
        return self._decode(WaybillBatch, body).root

    def fetch_waybill(self, deadline: Optional[float] = None) -> str:
        body = self.send("GET", SINGLE_WAYBILL_PATH, deadline=deadline)
        return self._decode(SingleWaybill, body).root

    def create_shipment(
        self, payload: Dict[str, Any], deadline: Optional[float] = None
    ) -> CreateShipmentResponse:
        body = self.send(
            "POST",
            CREATE_SHIPMENT_PATH,
            data={"format": "json", "data": json.dumps(payload)},
            deadline=deadline,
        )
        return self._decode(CreateShipmentResponse, body)

    def create_pickup(
        self, payload: Dict[str, Any], deadline: Optional[float] = None
    ) -> PickupResponse:
        body = self.send("POST", PICKUP_PATH, json_body=payload, deadline=deadline)
        return self._decode(PickupResponse, body)

    def track(self, waybill: str, deadline: Optional[float] = None) -> TrackingResponse:
        body = self.send("GET", TRACKING_PATH, params={"waybill": waybill}, deadline=deadline)
        return self._decode(TrackingResponse, body)

    def cancel_shipment(self, waybill: str, deadline: Optional[float] = None) -> EditResponse:
        body = self.send(
            "POST",
            EDIT_PATH,
            json_body={"waybill": waybill, "cancellation": "true"},
            deadline=deadline,
        )
        return self._decode(EditResponse, body)

    def edit_shipment(self, payload: Dict[str, Any], deadline: Optional[float] = None) -> EditResponse:
        fields = ", ".join(sorted(key for key in payload if key != "waybill"))
        log.info(f"Editing shipment {payload.get('waybill')}: {fields}")
        body = self.send("POST", EDIT_PATH, json_body=payload, deadline=deadline)
        return self._decode(EditResponse, body)

    def check_serviceability(
        self, pincode: str, deadline: Optional[float] = None
    ) -> ServiceabilityResponse:
        body = self.send(
            "GET", SERVICEABILITY_PATH, params={"filter_codes": pincode}, deadline=deadline
        )
        return self._decode(ServiceabilityResponse, body)


_client: Optional[CarrierClient] = None


def get_carrier_client() -> CarrierClient:
    global _client
    if _client is None:
        _client = CarrierClient()
        log.info(f"Carrier client configured: {_client.status()}")
    return _client
