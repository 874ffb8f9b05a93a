"""
Safaricom Daraja client for Lipa Na M-Pesa Online (STK push).

Flow:
1. POST /mpesa/stkpush -> PaymentInitiationService -> MpesaClient.stk_push()
2. The customer gets a PIN prompt on their phone
3. Safaricom calls our callback URL with the outcome
"""

import base64
import logging
import re
from datetime import datetime, timedelta, timezone

import httpx
from pydantic import BaseModel, ConfigDict, Field

from sureodds.core.config import Settings

logger = logging.getLogger(__name__)

# Daraja expects timestamps in Kenyan local time (EAT, no DST)
EAT = timezone(timedelta(hours=3), "EAT")

TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
TRANSACTION_TYPE = "CustomerPayBillOnline"

MIN_PHONE_DIGITS = 9
_SEPARATORS = re.compile(r"[\s\-().]")


class MpesaError(Exception):
    pass


class MpesaAuthError(MpesaError):
    pass


class MpesaRequestError(MpesaError):
    def __init__(self, message: str, *, status_code: int | None = None, response: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response or {}


class InvalidPhoneNumberError(ValueError):
    pass


# ---------------------------
# pure helpers
# ---------------------------

def normalize_phone(raw: str, country_code: str = "254") -> str:
    """
    Map any local spelling of a number to the 2547XXXXXXXX form Daraja wants.

    0712 345 678, +254712345678, 254712345678 and 712345678 all normalize
    to 254712345678.
    """
    stripped = _SEPARATORS.sub("", raw or "")
    if stripped.startswith("+"):
        stripped = stripped[1:]

    if not stripped.isdigit() or len(stripped) < MIN_PHONE_DIGITS:
        raise InvalidPhoneNumberError("Invalid phone number")

    if stripped.startswith("0"):
        return country_code + stripped[1:]
    if stripped.startswith(country_code):
        return stripped
    return country_code + stripped


def daraja_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(EAT).strftime("%Y%m%d%H%M%S")


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    # base64(Shortcode + Passkey + Timestamp)
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


def _error_message(r: httpx.Response, fallback: str) -> tuple[str, dict]:
    try:
        body = r.json() if r.content else {}
    except ValueError:
        return fallback, {"raw": r.text}
    if not isinstance(body, dict):
        return fallback, {"raw": body}
    return str(body.get("errorMessage") or fallback), body


class StkPushResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    merchant_request_id: str = Field(alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    response_code: str = Field(alias="ResponseCode")
    response_description: str = Field(default="", alias="ResponseDescription")
    customer_message: str = Field(default="", alias="CustomerMessage")

    @property
    def accepted(self) -> bool:
        # "0" only means Safaricom queued the prompt, not that anyone paid
        return self.response_code == "0"


# ---------------------------
# HTTP client
# ---------------------------

class MpesaClient:
    def __init__(
        self,
        *,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        timeout: float = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "MpesaClient":
        return cls(
            base_url=settings.mpesa_base_url,
            consumer_key=settings.mpesa_consumer_key,
            consumer_secret=settings.mpesa_consumer_secret,
            shortcode=settings.mpesa_shortcode,
            passkey=settings.mpesa_passkey,
            callback_url=settings.mpesa_callback_url,
            timeout=settings.mpesa_timeout_seconds,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def get_access_token(self) -> str:
        """
        OAuth client-credentials token. Not cached: one token per push,
        so a retried push simply fetches a fresh one.
        """
        basic = base64.b64encode(f"{self.consumer_key}:{self.consumer_secret}".encode("utf-8")).decode("ascii")
        headers = {"Authorization": f"Basic {basic}"}
        try:
            async with self._client() as client:
                r = await client.get(TOKEN_PATH, headers=headers)
        except httpx.HTTPError as exc:
            raise MpesaAuthError(f"Token request failed: {exc}") from exc

        if r.status_code != 200:
            message, _ = _error_message(r, f"Token endpoint returned {r.status_code}")
            raise MpesaAuthError(message)

        try:
            body = r.json()
        except ValueError:
            # gateways sometimes answer 200 with an HTML error page
            raise MpesaAuthError("Token endpoint returned a non-JSON body") from None
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise MpesaAuthError("Token endpoint returned no access_token")
        return token

    async def stk_push(
        self,
        *,
        phone: str,
        amount: int,
        account_reference: str,
        transaction_desc: str,
        now: datetime | None = None,
    ) -> StkPushResponse:
        """
        Send the PIN prompt. ``phone`` must already be normalized.
        Docs: POST /mpesa/stkpush/v1/processrequest
        """
        token = await self.get_access_token()
        timestamp = daraja_timestamp(now)

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": build_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": int(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc,
        }
        headers = {"Authorization": f"Bearer {token}"}

        try:
            async with self._client() as client:
                r = await client.post(STK_PUSH_PATH, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise MpesaRequestError(f"STK push request failed: {exc}") from exc

        if r.status_code not in (200, 201):
            message, body = _error_message(r, "Failed to initiate payment")
            logger.warning("mpesa.stk_push.http_error", extra={"mpesa_status": r.status_code, "mpesa_response": body})
            raise MpesaRequestError(message, status_code=r.status_code, response=body)

        try:
            body = r.json()
            if not isinstance(body, dict):
                raise ValueError(f"expected an object, got {type(body).__name__}")
            return StkPushResponse.model_validate(body)
        except ValueError as exc:
            # pydantic's ValidationError is a ValueError, as is a JSON decode error
            raise MpesaRequestError("Unexpected STK push response", status_code=r.status_code) from exc
