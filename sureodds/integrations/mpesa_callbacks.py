import re
from dataclasses import dataclass, replace
from typing import Any


_INT_STRING = re.compile(r"-?\d+")


class MalformedCallbackError(ValueError):
    pass


@dataclass(frozen=True)
class StkCallback:
    merchant_request_id: str
    checkout_request_id: str
    result_code: int
    result_desc: str
    # Only present when result_code == 0
    amount: float | None = None
    mpesa_receipt: str | None = None
    transaction_date: str | None = None
    phone: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


def _strict_int(x: Any) -> int | None:
    # int() would truncate 0.9 to 0, which reads as a successful payment
    if isinstance(x, bool):
        return None
    if isinstance(x, int):
        return x
    if isinstance(x, str) and _INT_STRING.fullmatch(x.strip()):
        return int(x)
    return None


def _safe_float(x: Any) -> float | None:
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def _metadata_items(callback: dict[str, Any]) -> dict[str, Any]:
    """
    CallbackMetadata.Item is a list of {"Name": ..., "Value": ...}.
    Items without a Name, or without a Value (Safaricom omits it for
    some fields), are skipped instead of failing the whole parse.
    """
    metadata = callback.get("CallbackMetadata") or {}
    items = metadata.get("Item") if isinstance(metadata, dict) else None
    if not isinstance(items, list):
        return {}

    out: dict[str, Any] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("Name")
        if name and "Value" in item:
            out[str(name)] = item["Value"]
    return out


def parse_stk_callback(body: Any) -> StkCallback:
    """
    Body shape:
    {"Body": {"stkCallback": {"MerchantRequestID", "CheckoutRequestID",
     "ResultCode", "ResultDesc", "CallbackMetadata": {"Item": [...]}}}}
    """
    if not isinstance(body, dict):
        raise MalformedCallbackError("Callback body is not an object")

    envelope = body.get("Body")
    callback = envelope.get("stkCallback") if isinstance(envelope, dict) else None
    if not isinstance(callback, dict):
        raise MalformedCallbackError("Missing Body.stkCallback")

    checkout_request_id = callback.get("CheckoutRequestID")
    if not checkout_request_id:
        raise MalformedCallbackError("Missing CheckoutRequestID")

    result_code = _strict_int(callback.get("ResultCode"))
    if result_code is None:
        raise MalformedCallbackError(f"Invalid ResultCode: {callback.get('ResultCode')!r}")

    parsed = StkCallback(
        merchant_request_id=str(callback.get("MerchantRequestID") or ""),
        checkout_request_id=str(checkout_request_id),
        result_code=result_code,
        result_desc=str(callback.get("ResultDesc") or ""),
    )
    if result_code != 0:
        return parsed

    meta = _metadata_items(callback)
    receipt = meta.get("MpesaReceiptNumber")
    txn_date = meta.get("TransactionDate")
    phone = meta.get("PhoneNumber")
    return replace(
        parsed,
        amount=_safe_float(meta.get("Amount")),
        mpesa_receipt=str(receipt) if receipt is not None else None,
        transaction_date=str(txn_date) if txn_date is not None else None,
        phone=str(phone) if phone is not None else None,
    )
