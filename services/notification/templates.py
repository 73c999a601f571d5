from datetime import datetime
from typing import Any, Dict, Optional

from common.constants import MAPS_URL, UNKNOWN
from common.enums import AlertType


# In-code templates for now; later swap this module with a localized store.
# Key format: "{alert_type}.{channel}.{locale}"
TEMPLATES: Dict[str, str] = {
    "emergency_alert.sms.en": (
        "\U0001F6A8 EMERGENCY ALERT \U0001F6A8\n\n"
        "{reason}\n\n"
        "Location: {location_link}\n"
        "Time: {time}\n"
        "Accuracy: {accuracy}\n"
        "Live details: {access_url}\n\n"
        "This is an automated safety alert from SafeGuard app."
    ),
    "check_in.sms.en": (
        "✅ Safe Check-in\n\n"
        "I'm safe and checking in as scheduled.\n"
        "Location: {location_link}\n"
        "Time: {time}"
    ),
}


def get_template(alert_type: str, channel: str = "sms", locale: str = "en") -> str:
    key = f"{alert_type}.{channel}.{locale}"
    return TEMPLATES.get(key, "")


def render(template: str, variables: Dict[str, str]) -> str:
    message = template
    for key, value in variables.items():
        message = message.replace(f"{{{key}}}", value)
    return message


def _coords(location: Any) -> Optional[Dict[str, Any]]:
    if location is None or not getattr(location, "has_fix", True):
        return None
    if isinstance(location, dict):
        lat, lng = location.get("lat"), location.get("lng")
        accuracy = location.get("accuracy_meters")
    else:
        lat, lng = getattr(location, "lat", None), getattr(location, "lng", None)
        accuracy = getattr(location, "accuracy_meters", None)
    if lat is None or lng is None:
        return None
    return {"lat": lat, "lng": lng, "accuracy": accuracy}


def maps_link(location: Any) -> str:
    coords = _coords(location)
    if coords is None:
        return UNKNOWN
    return MAPS_URL.format(lat=coords["lat"], lng=coords["lng"])


def _format_time(sent_at: datetime) -> str:
    return sent_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def build_alert_message(reason: str, location: Any, access_url: str, sent_at: datetime) -> str:
    coords = _coords(location)
    accuracy = UNKNOWN
    if coords is not None and coords["accuracy"] is not None:
        try:
            accuracy = f"{float(coords['accuracy']):g}m"
        except (TypeError, ValueError):
            accuracy = UNKNOWN
    return render(
        get_template(AlertType.EMERGENCY_ALERT.value),
        {
            "reason": reason,
            "location_link": maps_link(location),
            "time": _format_time(sent_at),
            "accuracy": accuracy,
            "access_url": access_url,
        },
    )


def build_check_in_message(location: Any, sent_at: datetime) -> str:
    return render(
        get_template(AlertType.CHECK_IN.value),
        {"location_link": maps_link(location), "time": _format_time(sent_at)},
    )
