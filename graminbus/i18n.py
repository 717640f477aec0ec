"""Bilingual (English / Hindi) labels for status text"""

from typing import Dict

from .models import CapacityStatus, Language, TrafficStatus


LABELS: Dict[Language, Dict[str, str]] = {
    Language.EN: {
        "app_name": "GraminBus Shahpura",
        "seats_remaining": "Seats Left",
        "standing_only": "Standing Only",
        "full": "Bus Full",
        "overloaded": "Overloaded",
        "offline_mode": "Offline Mode",
        "syncing": "Syncing...",
        "pending_sync": "Updates pending",
        "cached_data": "Using cached data",
        "eta_label": "Arriving in",
        "traffic_smooth": "Clear Road",
        "traffic_heavy": "Traffic",
        "traffic_block": "Road Block",
        "village_name": "Shahpura (शाहपुरा)",
    },
    Language.HI: {
        "app_name": "शाहपुरा ग्रामीण बस",
        "seats_remaining": "सीटें खाली",
        "standing_only": "केवल खड़े",
        "full": "बस भरी है",
        "overloaded": "ओवरलोड",
        "offline_mode": "ऑफलाइन मोड",
        "syncing": "सिंक हो रहा है...",
        "pending_sync": "अपडेट बाकी है",
        "cached_data": "कैश डेटा",
        "eta_label": "पहुँच रही है",
        "traffic_smooth": "रास्ता साफ़",
        "traffic_heavy": "भीड़/ट्रैफिक",
        "traffic_block": "रास्ता बंद",
        "village_name": "शाहपुरा",
    },
}

CAPACITY_LABELS = {
    CapacityStatus.AVAILABLE: "seats_remaining",
    CapacityStatus.STANDING: "standing_only",
    CapacityStatus.FULL: "full",
    CapacityStatus.OVERLOADED: "overloaded",
}

TRAFFIC_LABELS = {
    TrafficStatus.SMOOTH: "traffic_smooth",
    TrafficStatus.HEAVY: "traffic_heavy",
    TrafficStatus.BLOCK: "traffic_block",
}


def label(language: Language, key: str) -> str:
    return LABELS[Language(language)][key]


def capacity_label(language: Language, status: CapacityStatus) -> str:
    return label(language, CAPACITY_LABELS[CapacityStatus(status)])


def traffic_label(language: Language, status: TrafficStatus) -> str:
    return label(language, TRAFFIC_LABELS[TrafficStatus(status)])


def offline_banner(language: Language, pending: int) -> str:
    """Banner shown while offline, e.g. 'Offline Mode - 3 Updates pending'"""
    detail = f"{pending} {label(language, 'pending_sync')}" if pending > 0 else label(language, "cached_data")
    return f"{label(language, 'offline_mode')} - {detail}"
