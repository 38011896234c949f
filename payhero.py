from __future__ import annotations

import logging
from typing import Any

import requests

from settings import Settings

logger = logging.getLogger("planledger.payhero")


class PayHeroError(RuntimeError):
    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


def send_stk_push(
    settings: Settings,
    *,
    external_reference: str,
    amount: int,
    phone_number: str,
    session: requests.Session | None = None,
) -> dict[str, Any]:
    """Ask PayHero to prompt ``phone_number`` for an M-Pesa payment.

    The gateway later reports the outcome to the configured callback URL,
    echoing ``external_reference``.
    """
    if not settings.payhero_configured:
        raise PayHeroError("PayHero credentials or configuration missing.", status_code=503)
    body = {
        "amount": amount,
        "phone_number": phone_number,
        "channel_id": settings.payhero_channel_id,
        "provider": "m-pesa",
        "external_reference": external_reference,
        "callback_url": settings.payhero_callback_url,
    }
    http = session or requests
    try:
        resp = http.post(
            f"{settings.payhero_api_base}/payments",
            json=body,
            auth=(settings.payhero_username, settings.payhero_password),
            timeout=15,
        )
    except requests.RequestException as exc:
        logger.exception("Failed to reach PayHero.")
        raise PayHeroError("Payment provider unavailable.") from exc

    if resp.status_code >= 400:
        logger.error("PayHero API error: %s", resp.text)
        raise PayHeroError("STK push was unsuccessful.")
    try:
        payload = resp.json()
    except ValueError as exc:
        raise PayHeroError("Failed to decode PayHero response.") from exc
    if not isinstance(payload, dict) or not payload.get("success"):
        logger.warning("PayHero rejected STK push for %s: %s", external_reference, payload)
        raise PayHeroError("STK push was unsuccessful.")
    return payload
