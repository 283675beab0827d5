import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote
from xml.sax.saxutils import escape

import requests

from qrguard.core.config import settings

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """The vendor did not accept the call/SMS."""

    def __init__(self, message: str, *, channel: str) -> None:
        super().__init__(message)
        self.channel = channel


@dataclass(frozen=True)
class DispatchResult:
    channel: str
    call_id: str | None = None


class AlertDispatcher(Protocol):
    channel: str

    def dispatch(self, phone: str, message: str) -> DispatchResult: ...


def _digits(phone: str) -> str:
    return "".join(ch for ch in (phone or "").strip() if ch.isdigit())


def exotel_missing_fields() -> list[str]:
    missing: list[str] = []
    if not settings.exotel_sid:
        missing.append("EXOTEL_SID")
    if not settings.exotel_api_key:
        missing.append("EXOTEL_API_KEY")
    if not settings.exotel_api_token:
        missing.append("EXOTEL_API_TOKEN")
    if not settings.exotel_from_number:
        missing.append("EXOTEL_FROM_NUMBER")
    if not settings.exotel_caller_id:
        missing.append("EXOTEL_CALLER_ID")
    return missing


def msg91_missing_fields() -> list[str]:
    missing: list[str] = []
    if not settings.msg91_api_key:
        missing.append("MSG91_API_KEY")
    if not settings.msg91_sender_id:
        missing.append("MSG91_SENDER_ID")
    if not settings.msg91_alert_flow_id:
        missing.append("MSG91_ALERT_FLOW_ID")
    return missing


def dispatch_channels_available() -> dict:
    return {"voice": not exotel_missing_fields(), "sms": not msg91_missing_fields()}


def exotel_say_xml(msg: str) -> str:
    """Call-flow document Exotel fetches once the driver picks up."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<Response>\n"
        f'  <Say language="hin">{escape(msg)}</Say>\n'
        "</Response>"
    )


class ExotelVoiceDispatcher:
    """
    Transactional voice call via Exotel's connect API.
    Exotel dials `To` and then fetches `Url`, which reads the message aloud.
    """

    channel = "voice"

    def __init__(self, *, session: requests.Session | None = None) -> None:
        self._http = session or requests

    def dispatch(self, phone: str, message: str) -> DispatchResult:
        missing = exotel_missing_fields()
        if missing:
            logger.warning("Exotel not configured; missing=%s", ",".join(missing))
            raise DispatchError("Voice calls are not configured", channel=self.channel)

        url = f"https://{settings.exotel_subdomain}/v1/Accounts/{settings.exotel_sid}/Calls/connect.json"
        say_url = f"{settings.public_base_url.rstrip('/')}/api/exotel-say?msg={quote(message)}"
        form = {
            "From": settings.exotel_from_number,
            "To": _digits(phone),
            "CallerId": settings.exotel_caller_id,
            "CallType": "trans",
            "Url": say_url,
        }
        try:
            resp = self._http.post(
                url,
                data=form,
                auth=(settings.exotel_api_key, settings.exotel_api_token),
                timeout=settings.dispatch_timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning("Exotel call exception: %s", e)
            raise DispatchError(f"Exotel call failed: {e}", channel=self.channel) from e

        if resp.status_code // 100 != 2:
            logger.warning("Exotel call failed: status=%s body=%s", resp.status_code, resp.text[:300])
            raise DispatchError(f"Exotel call failed with status {resp.status_code}", channel=self.channel)

        call_id = None
        try:
            call_id = (resp.json().get("Call") or {}).get("Sid")
        except ValueError:
            logger.warning("Exotel call accepted but response was not JSON")
        return DispatchResult(channel=self.channel, call_id=call_id)


class Msg91TextDispatcher:
    """SMS via an MSG91 Flow that takes the alert text as a variable."""

    channel = "sms"

    def __init__(self, *, session: requests.Session | None = None) -> None:
        self._http = session or requests

    def dispatch(self, phone: str, message: str) -> DispatchResult:
        missing = msg91_missing_fields()
        if missing:
            logger.warning("MSG91 not configured; missing=%s", ",".join(missing))
            raise DispatchError("SMS alerts are not configured", channel=self.channel)

        mobile = _digits(phone)
        if len(mobile) == 10:
            # MSG91 wants the country code.
            mobile = "91" + mobile
        var_key = (settings.msg91_alert_var or "MESSAGE").strip() or "MESSAGE"
        payload = {
            "flow_id": settings.msg91_alert_flow_id,
            "sender": settings.msg91_sender_id,
            "mobiles": mobile,
            var_key: message,
        }
        headers = {"accept": "application/json", "content-type": "application/json", "authkey": settings.msg91_api_key}
        try:
            resp = self._http.post(
                "https://api.msg91.com/api/v5/flow/",
                json=payload,
                headers=headers,
                timeout=settings.dispatch_timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning("MSG91 SMS send exception: %s", e)
            raise DispatchError(f"MSG91 send failed: {e}", channel=self.channel) from e

        if resp.status_code // 100 != 2:
            logger.warning("MSG91 SMS send failed: status=%s body=%s", resp.status_code, resp.text[:300])
            raise DispatchError(f"MSG91 send failed with status {resp.status_code}", channel=self.channel)

        request_id = None
        try:
            request_id = resp.json().get("request_id")
        except ValueError:
            logger.warning("MSG91 accepted the SMS but response was not JSON")
        return DispatchResult(channel=self.channel, call_id=request_id)


class LoggingDispatcher:
    """Dev mode: no vendor traffic, the alert is only logged."""

    def __init__(self, channel: str = "voice") -> None:
        self.channel = channel

    def dispatch(self, phone: str, message: str) -> DispatchResult:
        logger.info("[dev] %s alert to %s: %s", self.channel, phone, message)
        return DispatchResult(channel=self.channel, call_id=None)


def build_dispatcher() -> AlertDispatcher:
    if settings.alert_dev_mode:
        return LoggingDispatcher(settings.alert_channel)
    if settings.alert_channel == "sms":
        return Msg91TextDispatcher()
    return ExotelVoiceDispatcher()
