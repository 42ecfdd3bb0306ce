"""
Direct Safaricom Daraja client for M-Pesa Express (STK push) payments.

Daraja does not echo our external reference in its callback. The
CheckoutRequestID returned here is stored on the payment record as the
provider reference, and the callback is matched on it.
"""

import base64
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from helaloans.core.config import settings
from helaloans.core.errors import ValidationError, ExternalGatewayError
from helaloans.schemas.payment_schema import StkPushResult
from helaloans.services.payhero_client import normalize_phone, mask_phone, generate_reference

logger = logging.getLogger(__name__)

# Tokens are issued for an hour; refresh a minute early
TOKEN_REFRESH_MARGIN_SECONDS = 60


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


def daraja_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")


class DarajaClient:
    """Async wrapper over Daraja's OAuth and STK push endpoints."""

    def __init__(
        self,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        shortcode: Optional[str] = None,
        passkey: Optional[str] = None,
        base_url: Optional[str] = None,
        callback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.consumer_key = consumer_key if consumer_key is not None else settings.DARAJA_CONSUMER_KEY
        self.consumer_secret = consumer_secret if consumer_secret is not None else settings.DARAJA_CONSUMER_SECRET
        self.shortcode = shortcode if shortcode is not None else settings.DARAJA_SHORTCODE
        self.passkey = passkey if passkey is not None else settings.DARAJA_PASSKEY
        self.base_url = (base_url or settings.DARAJA_BASE_URL).rstrip("/")
        self.callback_url = callback_url if callback_url is not None else settings.DARAJA_CALLBACK_URL
        self.timeout = timeout or settings.DARAJA_TIMEOUT_SECONDS
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/oauth/v1/generate?grant_type=client_credentials"

    @property
    def stk_push_url(self) -> str:
        return f"{self.base_url}/mpesa/stkpush/v1/processrequest"

    def _check_configured(self) -> None:
        missing = [
            name for name, value in (
                ("DARAJA_CONSUMER_KEY", self.consumer_key),
                ("DARAJA_CONSUMER_SECRET", self.consumer_secret),
                ("DARAJA_SHORTCODE", self.shortcode),
                ("DARAJA_PASSKEY", self.passkey),
                ("DARAJA_CALLBACK_URL", self.callback_url),
            ) if not value
        ]
        if missing:
            logger.error(f"Daraja settings not configured: {', '.join(missing)}")
            raise ExternalGatewayError("M-Pesa credentials not configured")

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        credentials = base64.b64encode(f"{self.consumer_key}:{self.consumer_secret}".encode("utf-8")).decode("ascii")
        response = await client.get(self.token_url, headers={"Authorization": f"Basic {credentials}"})
        if response.is_error:
            logger.error(f"Daraja token request failed: HTTP {response.status_code} {response.text}")
            raise ExternalGatewayError("Failed to generate M-Pesa access token",
                                       details={"status_code": response.status_code})
        try:
            data = response.json()
        except ValueError as e:
            raise ExternalGatewayError("Failed to generate M-Pesa access token") from e

        token = data.get("access_token")
        if not token:
            raise ExternalGatewayError("Failed to generate M-Pesa access token")
        try:
            lifetime = int(data.get("expires_in", 3599))
        except (TypeError, ValueError):
            lifetime = 3599
        self._access_token = token
        self._token_expires_at = time.monotonic() + max(lifetime - TOKEN_REFRESH_MARGIN_SECONDS, 0)
        logger.info("Daraja access token generated")
        return token

    async def initiate_push(self, phone_number: str, amount: int, reference: Optional[str] = None) -> StkPushResult:
        """
        Prompt the payer's phone through M-Pesa Express.

        Returns our reference together with Daraja's CheckoutRequestID, which
        the callback carries instead of our reference.
        """
        formatted_phone = normalize_phone(phone_number)
        if int(amount) <= 0:
            raise ValidationError("Amount must be greater than zero", details={"amount": amount})
        self._check_configured()

        tx_reference = reference or generate_reference()
        timestamp = daraja_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": build_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": formatted_phone,
            "PartyB": self.shortcode,
            "PhoneNumber": formatted_phone,
            "CallBackURL": self.callback_url,
            # Daraja caps AccountReference at 12 characters and TransactionDesc at 13
            "AccountReference": tx_reference[:12],
            "TransactionDesc": "Hela Loans",
        }

        logger.info(f"Sending Daraja STK push {tx_reference} of KES {payload['Amount']} to {mask_phone(formatted_phone)}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                token = await self._get_access_token(client)
                response = await client.post(
                    self.stk_push_url,
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"HTTP error sending Daraja STK push {tx_reference}: {str(e)}")
            raise ExternalGatewayError(f"Failed to reach M-Pesa: {str(e)}") from e

        try:
            result = response.json()
        except ValueError:
            logger.error(f"Failed to parse JSON response from Daraja: HTTP {response.status_code}")
            result = {}

        if response.is_error or str(result.get("ResponseCode")) != "0":
            error_message = result.get("errorMessage") or result.get("ResponseDescription") or "STK Push failed"
            logger.error(f"Daraja rejected STK push {tx_reference}: HTTP {response.status_code} - {error_message}")
            raise ExternalGatewayError(
                str(error_message),
                details={"status_code": response.status_code, "response_code": result.get("ResponseCode")},
            )

        checkout_request_id = result.get("CheckoutRequestID")
        if not checkout_request_id:
            raise ExternalGatewayError("M-Pesa accepted the request without a CheckoutRequestID")

        logger.info(f"STK push {tx_reference} accepted by Daraja (CheckoutRequestID: {checkout_request_id})")
        return StkPushResult(reference=tx_reference, provider_reference=str(checkout_request_id))
