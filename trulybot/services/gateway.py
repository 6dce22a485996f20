import logging

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from trulybot.config import GATEWAY_TIMEOUT_SECONDS, razorpay_credentials
from trulybot.errors import ClientInputError, TransientError

logger = logging.getLogger("trulybot.gateway")


class RazorpayGateway:
    """Thin wrapper over the Razorpay client with explicit timeouts.

    Timeouts and upstream failures are retryable, so they surface as
    TransientError rather than as "not found".
    """

    def __init__(self, key_id: str, key_secret: str, timeout: float = GATEWAY_TIMEOUT_SECONDS):
        self.key_id = key_id
        self.timeout = timeout
        self.client = razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        data = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        return self._call("order.create", self.client.order.create, data=data, timeout=self.timeout)

    def fetch_payment(self, payment_id: str) -> dict:
        return self._call("payment.fetch", self.client.payment.fetch, payment_id, timeout=self.timeout)

    def _call(self, name, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except requests.Timeout:
            logger.warning(f"Gateway call {name} timed out after {self.timeout}s")
            raise TransientError("Payment gateway timed out", code="GATEWAY_TIMEOUT")
        except requests.RequestException as e:
            logger.warning(f"Gateway call {name} failed: {e.__class__.__name__}")
            raise TransientError("Payment gateway unavailable", code="GATEWAY_UNAVAILABLE")
        except BadRequestError as e:
            logger.info(f"Gateway rejected {name}: {e}")
            raise ClientInputError("Payment gateway rejected the request", code="GATEWAY_REJECTED")
        except (ServerError, GatewayError) as e:
            logger.warning(f"Gateway error on {name}: {e}")
            raise TransientError("Payment gateway unavailable", code="GATEWAY_UNAVAILABLE")


def default_gateway_factory() -> RazorpayGateway:
    key_id, key_secret = razorpay_credentials()
    return RazorpayGateway(key_id, key_secret)
