"""
PayHero client for M-Pesa STK push payments.

PayHero forwards the charge to Safaricom, which prompts the payer for their
M-Pesa PIN. The outcome arrives later on our callback URL keyed by the
external reference we send here.
"""

import base64
import logging
import re
import time
import uuid
from typing import Optional

import httpx

from helaloans.core.config import settings
from helaloans.core.errors import ValidationError, ExternalGatewayError
from helaloans.schemas.payment_schema import StkPushResult

logger = logging.getLogger(__name__)

SAFARICOM_MSISDN_RE = re.compile(r"^254[17]\d{8}$")


def normalize_phone(phone_number: str) -> str:
    """
    Normalize a Kenyan mobile number to the 254XXXXXXXXX form M-Pesa expects.

    Args:
        phone_number: Number in any common format
                     Examples: "0712345678", "+254712345678", "254712345678", "712345678"

    Returns:
        str: Normalized number, e.g. "254712345678"

    Raises:
        ValidationError: If the number is not a Kenyan mobile number
    """
    if not phone_number or not str(phone_number).strip():
        raise ValidationError("Phone number is required")

    digits = re.sub(r"\D", "", str(phone_number))
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif not digits.startswith("254"):
        digits = "254" + digits

    if not SAFARICOM_MSISDN_RE.match(digits):
        raise ValidationError(
            "Please enter a valid M-Pesa phone number (07XXXXXXXX, 01XXXXXXXX or +2547XXXXXXXX)",
            details={"phone_number": phone_number},
        )
    return digits


def mask_phone(phone_number: str) -> str:
    return f"{phone_number[:5]}...***" if phone_number else "<none>"


def generate_reference(prefix: Optional[str] = None) -> str:
    """Caller-side idempotency key correlating a push request with its callback."""
    prefix = prefix or settings.TRANSACTION_REFERENCE_PREFIX
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6].upper()}"


def build_auth_header(api_key: str) -> str:
    # Raw "username:password" credentials are encoded; anything else is taken as an encoded token
    if ":" in api_key:
        token = base64.b64encode(api_key.encode("utf-8")).decode("ascii")
    else:
        token = api_key
    return f"Basic {token}"


class PayHeroClient:
    """Thin async wrapper over PayHero's payment-initiation endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        channel_id: Optional[str] = None,
        base_url: Optional[str] = None,
        callback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.PAYHERO_API_KEY
        self.channel_id = channel_id if channel_id is not None else settings.PAYHERO_CHANNEL_ID
        self.base_url = (base_url or settings.PAYHERO_BASE_URL).rstrip("/")
        self.callback_url = callback_url if callback_url is not None else settings.PAYHERO_CALLBACK_URL
        self.timeout = timeout or settings.PAYHERO_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def payments_url(self) -> str:
        return f"{self.base_url}/api/v2/payments"

    def _check_configured(self) -> None:
        if not self.api_key or not self.channel_id:
            logger.error("PayHero credentials not configured")
            raise ExternalGatewayError("Payment gateway credentials not configured")
        if not self.callback_url:
            logger.error("PAYHERO_CALLBACK_URL not configured")
            raise ExternalGatewayError("Payment gateway callback URL not configured")
        try:
            int(self.channel_id)
        except (TypeError, ValueError) as e:
            raise ExternalGatewayError("PAYHERO_CHANNEL_ID must be numeric") from e

    async def initiate_push(self, phone_number: str, amount: int, reference: Optional[str] = None) -> StkPushResult:
        """
        Send an STK push prompt to the payer's phone.

        Args:
            phone_number: Payer's phone number in any accepted format
            amount: Whole-shilling amount to charge
            reference: Our external reference; generated if omitted

        Returns:
            StkPushResult: our reference plus the gateway's request reference

        Raises:
            ValidationError: Bad phone number or amount
            ExternalGatewayError: Gateway not configured, unreachable or rejected the request
        """
        formatted_phone = normalize_phone(phone_number)
        if int(amount) <= 0:
            raise ValidationError("Amount must be greater than zero", details={"amount": amount})
        self._check_configured()

        tx_reference = reference or generate_reference()
        payload = {
            "amount": int(amount),
            "phone_number": formatted_phone,
            "channel_id": int(self.channel_id),
            "provider": "m-pesa",
            "external_reference": tx_reference,
            "callback_url": self.callback_url,
        }
        headers = {
            "Authorization": build_auth_header(self.api_key),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        logger.info(f"Sending STK push {tx_reference} of KES {payload['amount']} to {mask_phone(formatted_phone)}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.payments_url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error sending STK push {tx_reference}: {str(e)}")
            raise ExternalGatewayError(f"Failed to reach payment gateway: {str(e)}") from e

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Failed to parse JSON response from PayHero: HTTP {response.status_code}")
            response_data = {}

        if response.is_error:
            error_message = (
                response_data.get("error_message")
                or response_data.get("message")
                or response_data.get("error")
                or "Failed to initiate STK Push"
            )
            logger.error(f"PayHero API error: HTTP {response.status_code} - {error_message}")
            raise ExternalGatewayError(
                str(error_message),
                details={"status_code": response.status_code},
            )

        provider_reference = response_data.get("reference") or response_data.get("CheckoutRequestID") or response_data.get("id")
        logger.info(f"STK push {tx_reference} accepted by PayHero (provider reference: {provider_reference})")
        return StkPushResult(
            reference=tx_reference,
            provider_reference=str(provider_reference) if provider_reference is not None else None,
        )
