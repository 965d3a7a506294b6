import hashlib
import hmac
from typing import Any, Dict, Mapping, Optional


def extract_payment_reference(body: Optional[Dict[str, Any]], query: Mapping[str, str]) -> Dict[str, Optional[str]]:
    """Pull topic, action and payment id out of a provider notification.

    Body-style notifications carry {"type": "payment", "data": {"id": ...}};
    the legacy query form is ?topic=payment&id=... or ?type=payment&data.id=...
    """
    body = body or {}
    topic = body.get("type") or body.get("topic") or query.get("type") or query.get("topic")
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    payment_id = data.get("id") or query.get("data.id") or query.get("id")
    return {
        "topic": str(topic).lower() if topic else None,
        "action": body.get("action"),
        "payment_id": str(payment_id) if payment_id is not None else None,
        "event_id": str(body["id"]) if body.get("id") is not None else None,
    }


def parse_signature_header(header: str) -> Dict[str, str]:
    parts: Dict[str, str] = {}
    for chunk in (header or "").split(","):
        if "=" in chunk:
            k, v = chunk.split("=", 1)
            parts[k.strip()] = v.strip()
    return parts


def verify_webhook_signature(secret: str, signature_header: Optional[str], request_id: Optional[str],
                             data_id: Optional[str]) -> bool:
    """x-signature is "ts=<ts>,v1=<hex hmac>" over "id:<data.id>;request-id:<x-request-id>;ts:<ts>;"."""
    if not signature_header:
        return False
    parts = parse_signature_header(signature_header)
    ts, received = parts.get("ts"), parts.get("v1")
    if not ts or not received:
        return False
    manifest = ""
    if data_id:
        manifest += f"id:{str(data_id).lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)
