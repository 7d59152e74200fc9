# --- CLEAN LOGGING VERSION OF prayer_api.py ---

import requests
import logging
from datetime import date, datetime

ALADHAN_URL = "https://api.aladhan.com/v1/timings/{day}"

# Aladhan numeric method ids, keyed by the names the admin dashboard stores.
ALADHAN_METHODS = {
    "Karachi": 1,
    "NorthAmerica": 2,
    "MuslimWorldLeague": 3,
    "UmmAlQura": 4,
    "Egyptian": 5,
    "Tehran": 7,
    "Kuwait": 9,
    "Qatar": 10,
    "Singapore": 11,
    "Turkey": 13,
    "MoonsightingCommittee": 15,
    "Dubai": 16,
}

TIMINGS = ["Fajr", "Sunrise", "Dhuhr", "Asr", "Maghrib", "Isha"]


def get_prayer_times(latitude: float, longitude: float, method: str, day: date) -> dict:
    """Fetch one day's raw prayer times from the Aladhan API.

    Returns naive datetimes on ``day`` keyed by prayer name, or ``{}`` when
    the request fails.
    """
    method_id = ALADHAN_METHODS.get(method)
    if method_id is None:
        logging.warning(f"[PRAYER] Unknown method {method!r}; using MuslimWorldLeague")
        method_id = ALADHAN_METHODS["MuslimWorldLeague"]

    api_url = ALADHAN_URL.format(day=day.strftime("%d-%m-%Y"))
    params = {"latitude": latitude, "longitude": longitude, "method": method_id}

    logging.info(f"[PRAYER] Fetching prayer times ({latitude}, {longitude}) for {day}")

    try:
        response = requests.get(api_url, params=params, timeout=10)
        response.raise_for_status()
        data = response.json()
        timings = data["data"]["timings"]
    except (requests.RequestException, ValueError, KeyError, TypeError) as e:
        logging.error(f"[PRAYER] Failed to fetch prayer times: {e}")
        return {}

    times = {}
    for name in TIMINGS:
        raw = timings.get(name)
        if not raw:
            continue
        try:
            # "04:31" or "04:31 (WIB)"
            t = datetime.strptime(raw.split()[0], "%H:%M").time()
        except ValueError:
            logging.warning(f"[PRAYER] Unparseable {name} time {raw!r}")
            continue
        times[name] = datetime.combine(day, t)

    return times
