# --- Masjid display engine entry point ---

import argparse
import threading
import logging
import time

from tabulate import tabulate

from utils.logger import setup_logging
from core.engine import Engine
from core.errors import SettingsUnavailable
from core.playback import FfplayDriver
from core.prayer_times import ADHAN_PRAYERS, PrayerTimeCalculator
from core.settings import YamlSettingsStore


# ========== HOURLY SYSTEM DIGEST ==========
def heartbeat_status(engine: Engine, stop_flag: threading.Event, interval_minutes: int = 60):
    while not stop_flag.is_set():
        try:
            snap = engine.snapshot()
            upcoming = snap["next_prayer"]
            active = snap["audio"]["active"]

            logging.info("")
            logging.info("----- SYSTEM DIGEST -----")
            logging.info(f"[STATUS] Settings loaded: {snap['settings_loaded']}")
            if upcoming:
                logging.info(f"[STATUS] Next prayer: {upcoming['name']} at {upcoming['time']} (in {upcoming['countdown']})")
            logging.info(f"[STATUS] Audio: {active['kind'] + ' ' + active['prayer'] if active else 'idle'}")
            logging.info("-------------------------")
            logging.info("")

        except Exception as e:
            logging.error(f"[ERROR] Heartbeat failure: {e}")

        stop_flag.wait(interval_minutes * 60)


def display_prayer_times(schedule) -> None:
    """Pretty-print the day's schedule in a formatted table."""
    adhaan_rows, other_rows = [], []
    for name, t in schedule.ordered():
        row = [name, t.strftime("%H:%M")]
        if name in ADHAN_PRAYERS or name == schedule.midday_name:
            adhaan_rows.append(row)
        else:
            other_rows.append(row)

    table = []
    for i in range(max(len(adhaan_rows), len(other_rows))):
        left = adhaan_rows[i] if i < len(adhaan_rows) else ["", ""]
        right = other_rows[i] if i < len(other_rows) else ["", ""]
        table.append(left + right)

    print(f"\n🕌 Prayer Timings — {schedule.day:%A %Y-%m-%d}\n"
          + tabulate(table, headers=["Adhan", "Time", "Other", "Time"], tablefmt="fancy_grid"))


def run_api(engine: Engine, host: str, port: int):
    import uvicorn
    from api.app import create_app

    try:
        uvicorn.run(create_app(engine), host=host, port=port, log_level="warning")
    except Exception as e:
        logging.error(f"[ERROR] API server crashed: {e}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Masjid display engine: prayer-time audio and overlay scheduler.")
    parser.add_argument("--config", default="config.yml", help="Path to the YAML settings file.")
    parser.add_argument("--show-schedule", action="store_true",
                        help="Print today's prayer schedule and exit.")
    parser.add_argument("--api", action="store_true", help="Serve the status/control API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    return parser.parse_args(argv)


# ========== MAIN ==========
def main(argv=None):
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    store = YamlSettingsStore(args.config)

    if args.show_schedule:
        try:
            settings = store.load()
        except SettingsUnavailable as e:
            logging.error(f"[CORE] {e}")
            return 1
        engine = Engine(store, FfplayDriver(), PrayerTimeCalculator())
        engine.apply_settings(settings)
        if engine.schedule is None:
            logging.error("[CORE] No prayer times available")
            return 1
        display_prayer_times(engine.schedule)
        return 0

    logging.info("[CORE] Masjid display engine started")

    engine = Engine(store, FfplayDriver())
    engine.start()

    stop_flag = threading.Event()
    threading.Thread(target=heartbeat_status, args=(engine, stop_flag), daemon=True).start()
    if args.api:
        threading.Thread(target=run_api, args=(engine, args.host, args.port), daemon=True).start()
        logging.info(f"[CORE] API listening on http://{args.host}:{args.port}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logging.info("[CORE] Shutdown requested")

        stop_flag.set()
        engine.stop()

        logging.info("[CORE] Masjid display engine closed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
