# src/infrastructure/payments/gateway.py

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass

import razorpay
import requests

from src.domain.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentOrder:
    order_id: str
    amount: int
    currency: str


class PaymentGateway(ABC):
    """
    Payment provider seen from the booking core.
    Amounts are whole rupees; adapters convert to provider units.
    """

    @abstractmethod
    def create_order(self, amount: int, reference: str) -> PaymentOrder:
        """Open an order for `amount`, tagged with our booking reference."""
        ...

    @abstractmethod
    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        """True only when the provider vouches for the payment."""
        ...

    @abstractmethod
    def refund(self, payment_id: str, amount: int) -> str:
        """Refund a captured payment, returning the provider's refund id."""
        ...


class RazorpayGateway(PaymentGateway):

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        currency: str = "INR",
    ):
        self.key_id = key_id
        self.currency = currency
        self._client = razorpay.Client(auth=(key_id, key_secret))

    @classmethod
    def from_env(cls) -> "RazorpayGateway":
        key_id = os.getenv("RAZORPAY_KEY_ID")
        key_secret = os.getenv("RAZORPAY_KEY_SECRET")
        if not key_id or not key_secret:
            raise PaymentGatewayError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return cls(
            key_id=key_id,
            key_secret=key_secret,
            currency=os.getenv("PAYMENT_CURRENCY", "INR"),
        )

    def create_order(self, amount: int, reference: str) -> PaymentOrder:
        try:
            order = self._client.order.create(
                {
                    "amount": amount * 100,
                    "currency": self.currency,
                    "receipt": reference,
                    "payment_capture": 1,
                }
            )
        except razorpay.errors.BadRequestError as exc:
            logger.error("Razorpay rejected order. reference=%s error=%s", reference, exc)
            raise PaymentGatewayError(f"Could not create payment order: {exc}") from exc
        except (
            razorpay.errors.ServerError,
            razorpay.errors.GatewayError,
            requests.exceptions.RequestException,
        ) as exc:
            logger.error("Razorpay unavailable. reference=%s error=%s", reference, exc)
            raise PaymentGatewayError("Payment provider unavailable") from exc

        return PaymentOrder(
            order_id=order["id"],
            amount=order.get("amount", amount * 100) // 100,
            currency=order.get("currency", self.currency),
        )

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        try:
            self._client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except razorpay.errors.SignatureVerificationError:
            logger.warning(
                "Invalid payment signature. order_id=%s payment_id=%s",
                order_id,
                payment_id,
            )
            return False
        return True

    def refund(self, payment_id: str, amount: int) -> str:
        try:
            refund = self._client.payment.refund(payment_id, {"amount": amount * 100})
        except (
            razorpay.errors.BadRequestError,
            razorpay.errors.ServerError,
            razorpay.errors.GatewayError,
            requests.exceptions.RequestException,
        ) as exc:
            raise PaymentGatewayError(f"Refund failed: {exc}") from exc
        return refund["id"]
