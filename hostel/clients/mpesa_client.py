"""M-Pesa STK push gateway client (Safaricom Daraja REST API)."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests

from hostel.domain.errors import GatewayError
from hostel.utils.clock import Clock, SystemClock
from hostel.utils.config import Settings, get_settings
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

SUCCESS_RESPONSE_CODE = "0"
SUCCESS_RESULT_CODE = "0"
# Daraja answers a status query with this error while the customer has not acted yet.
STILL_PROCESSING_ERROR_CODE = "500.001.1001"

OAUTH_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"


@dataclass(frozen=True)
class StkPushResponse:
    response_code: str
    checkout_request_id: Optional[str]
    response_description: str
    merchant_request_id: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.response_code == SUCCESS_RESPONSE_CODE and bool(self.checkout_request_id)


@dataclass(frozen=True)
class PaymentStatus:
    terminal: bool
    success: bool
    receipt_code: Optional[str] = None
    result_description: str = ""


PENDING_STATUS = PaymentStatus(terminal=False, success=False, result_description="processing")


class PaymentGateway(Protocol):
    def initiate(
        self,
        amount: float,
        phone_number: str,
        account_reference: str,
        description: str,
    ) -> StkPushResponse:
        ...

    def poll_status(self, checkout_request_id: str) -> PaymentStatus:
        ...


def _extract_receipt(payload: dict[str, Any]) -> Optional[str]:
    """
    Confirmation code for a successful STK query.

    The M-Pesa receipt number when the payload carries one, otherwise the
    CheckoutRequestID the gateway just confirmed. The STK query endpoint does
    not return the receipt, so the checkout id is the usual case.
    """
    receipt = payload.get("MpesaReceiptNumber")
    if receipt:
        return str(receipt)
    metadata = payload.get("CallbackMetadata")
    items = metadata.get("Item") if isinstance(metadata, dict) else None
    for item in items if isinstance(items, list) else []:
        if isinstance(item, dict) and item.get("Name") == "MpesaReceiptNumber" and item.get("Value"):
            return str(item["Value"])
    checkout_request_id = payload.get("CheckoutRequestID")
    if checkout_request_id:
        return str(checkout_request_id)
    return None


def parse_status_payload(payload: dict[str, Any]) -> PaymentStatus:
    """Translate a Daraja STK query payload into a PaymentStatus."""
    if not isinstance(payload, dict):
        raise GatewayError("M-Pesa returned an unexpected status payload shape")
    if payload.get("errorCode") == STILL_PROCESSING_ERROR_CODE:
        return PENDING_STATUS

    result_code = payload.get("ResultCode")
    if result_code is None:
        if payload.get("errorCode"):
            raise GatewayError(
                f"Status query failed: {payload.get('errorMessage') or payload['errorCode']}"
            )
        return PENDING_STATUS

    description = str(payload.get("ResultDesc") or "")
    if str(result_code) == SUCCESS_RESULT_CODE:
        return PaymentStatus(
            terminal=True,
            success=True,
            receipt_code=_extract_receipt(payload),
            result_description=description,
        )
    return PaymentStatus(terminal=True, success=False, result_description=description)


class DarajaGateway:
    """Synchronous Daraja client; OAuth tokens are cached until shortly before expiry."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session = session or requests.Session()
        self._clock = clock or SystemClock()
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    def _url(self, path: str) -> str:
        return f"{self._settings.mpesa_base_url.rstrip('/')}{path}"

    def _timestamp(self) -> str:
        return self._clock.now().strftime("%Y%m%d%H%M%S")

    def _password(self, timestamp: str) -> str:
        raw = f"{self._settings.mpesa_shortcode}{self._settings.mpesa_passkey}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def _get_access_token(self) -> str:
        if self._access_token and self._clock.monotonic() < self._token_expires_at:
            return self._access_token
        try:
            response = self._session.get(
                self._url(OAUTH_PATH),
                params={"grant_type": "client_credentials"},
                auth=(self._settings.mpesa_consumer_key, self._settings.mpesa_consumer_secret),
                timeout=self._settings.mpesa_request_timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GatewayError(f"Failed to obtain M-Pesa access token: {exc}") from exc

        if not isinstance(payload, dict):
            raise GatewayError("M-Pesa OAuth returned an unexpected payload shape")
        token = payload.get("access_token")
        if not token:
            raise GatewayError("M-Pesa OAuth response did not include an access token")
        try:
            expires_in = int(payload.get("expires_in", 3599))
        except (TypeError, ValueError) as exc:
            raise GatewayError(
                f"M-Pesa OAuth returned an invalid expires_in: {payload.get('expires_in')!r}"
            ) from exc
        margin = self._settings.mpesa_token_expiry_margin_seconds
        self._access_token = str(token)
        self._token_expires_at = self._clock.monotonic() + max(0, expires_in - margin)
        return self._access_token

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        token = self._get_access_token()
        try:
            response = self._session.post(
                self._url(path),
                json=body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._settings.mpesa_request_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"M-Pesa request to {path} failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError(
                f"M-Pesa returned a non-JSON response (HTTP {response.status_code})"
            ) from exc
        if not isinstance(payload, dict):
            raise GatewayError("M-Pesa returned an unexpected payload shape")
        return payload

    def initiate(
        self,
        amount: float,
        phone_number: str,
        account_reference: str,
        description: str,
    ) -> StkPushResponse:
        timestamp = self._timestamp()
        body = {
            "BusinessShortCode": self._settings.mpesa_shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(round(amount)),
            "PartyA": phone_number,
            "PartyB": self._settings.mpesa_shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self._settings.mpesa_callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }
        payload = self._post(STK_PUSH_PATH, body)
        logger.info(
            "STK push to %s response code=%s checkout=%s",
            phone_number,
            payload.get("ResponseCode"),
            payload.get("CheckoutRequestID"),
        )
        return StkPushResponse(
            response_code=str(payload.get("ResponseCode", payload.get("errorCode", ""))),
            checkout_request_id=payload.get("CheckoutRequestID"),
            response_description=str(
                payload.get("ResponseDescription") or payload.get("errorMessage") or ""
            ),
            merchant_request_id=payload.get("MerchantRequestID"),
        )

    def poll_status(self, checkout_request_id: str) -> PaymentStatus:
        timestamp = self._timestamp()
        payload = self._post(
            STK_QUERY_PATH,
            {
                "BusinessShortCode": self._settings.mpesa_shortcode,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": checkout_request_id,
            },
        )
        return parse_status_payload(payload)
