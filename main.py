# main.py
"""
FatigueWatch – Driver Fatigue Analytics Server
Entry point for local deployment and demonstration.

Launches up to two processes:
1. FastAPI backend server (uvicorn), including the maintenance scheduler
2. Optional demo client that logs a driver in, starts a session and posts
   synthetic detection events (--simulate)

Use Ctrl+C to terminate.
"""

import argparse
import logging
import multiprocessing
import random
import sys
import time

import requests

from shared.config import Config

logger = logging.getLogger("fatiguewatch")


def configure_logging(level: str = Config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ----------------------------------------------------------------------
# 1. FastAPI Server Process
# ----------------------------------------------------------------------

def run_server(config_overrides: dict):
    """Start Uvicorn server for the FastAPI application."""
    for name, value in config_overrides.items():
        setattr(Config, name, value)
    configure_logging(Config.LOG_LEVEL)

    import uvicorn
    from server.api import create_app

    app = create_app(enable_maintenance=Config.ENABLE_MAINTENANCE)
    logger.info(f"Starting on http://{Config.SERVER_HOST}:{Config.SERVER_PORT}")
    uvicorn.run(app, host=Config.SERVER_HOST, port=Config.SERVER_PORT,
                log_level=Config.LOG_LEVEL.lower())


# ----------------------------------------------------------------------
# 2. Demo Client Process
# ----------------------------------------------------------------------

def wait_for_server(server_url: str, attempts: int = 10) -> bool:
    for _ in range(attempts):
        try:
            resp = requests.get(f"{server_url}/health", timeout=1)
            if resp.status_code == 200:
                return True
        except requests.exceptions.ConnectionError:
            pass
        time.sleep(1)
    return False


def run_simulation(server_url: str, driver_id: str, driver_name: str,
                   interval: float, events: int):
    """
    Drive the server like the browser perception client would: log in,
    start a session, post detection events, ask for the prediction and
    end the session.
    """
    configure_logging(Config.LOG_LEVEL)
    if not wait_for_server(server_url):
        logger.error(f"Server at {server_url} is not responding")
        return

    http = requests.Session()
    http.post(f"{server_url}/api/drivers/login",
              json={"driverId": driver_id, "driverName": driver_name},
              timeout=2.0).raise_for_status()
    session = http.post(f"{server_url}/api/sessions/start",
                        json={"driverId": driver_id}, timeout=2.0).json()
    logger.info(f"[Client] Session {session['session_id']} started for driver {driver_id}")

    states = ["NORMAL", "NORMAL", "DISTRACTED", "DROWSY"]
    try:
        for _ in range(events):
            state = random.choice(states)
            ear = round(random.uniform(0.12, 0.35), 3)
            payload = {
                "driverId": driver_id,
                "sessionId": session["session_id"],
                "state": state,
                "duration": round(random.uniform(0.5, 8.0), 1),
                "metadata": {
                    "earValue": ear,
                    "leftEar": ear,
                    "rightEar": ear,
                    "headDirection": random.choice(["FORWARD", "LEFT", "RIGHT", "DOWN"]),
                    "faceDetected": True,
                    "featureSource": "simulation",
                    "blinkRate": random.randint(8, 30),
                },
            }
            try:
                resp = http.post(f"{server_url}/api/detection-event", json=payload, timeout=2.0)
                prediction = http.get(f"{server_url}/api/driver/{driver_id}/prediction",
                                      timeout=2.0).json()
                logger.info(f"[Client] {state:<10} -> {resp.json()['message']} | "
                            f"risk: {prediction['risk_level']} ({prediction['recommendation']})")
            except requests.exceptions.RequestException as e:
                logger.warning(f"[Client] Error sending event: {e}")
            time.sleep(interval)
    finally:
        http.post(f"{server_url}/api/sessions/end", json={"driverId": driver_id}, timeout=2.0)
        logger.info("[Client] Session ended")


# ----------------------------------------------------------------------
# 3. Main Orchestrator
# ----------------------------------------------------------------------

def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="FatigueWatch driver fatigue analytics server")
    parser.add_argument("--host", default=Config.SERVER_HOST, help="Bind address")
    parser.add_argument("--port", type=int, default=Config.SERVER_PORT, help="Bind port")
    parser.add_argument("--database-url", default=Config.DATABASE_URL,
                        help="SQLAlchemy database URL")
    parser.add_argument("--log-level", default=Config.LOG_LEVEL,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--no-maintenance", action="store_true",
                        help="Do not run the stale-session sweep and retention purge")
    parser.add_argument("--simulate", action="store_true",
                        help="Also run a demo client posting synthetic events")
    parser.add_argument("--driver-id", default="123456", help="Demo client driver id")
    parser.add_argument("--driver-name", default="Demo Driver", help="Demo client driver name")
    parser.add_argument("--events", type=int, default=30,
                        help="Number of events the demo client sends (default: 30)")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_arguments()

    # Update config
    Config.SERVER_HOST = args.host
    Config.SERVER_PORT = args.port
    Config.SERVER_URL = f"http://{args.host}:{args.port}"
    Config.DATABASE_URL = args.database_url
    Config.LOG_LEVEL = args.log_level
    Config.ENABLE_MAINTENANCE = not args.no_maintenance

    configure_logging(Config.LOG_LEVEL)
    logger.info(f"Server: {Config.SERVER_URL} | maintenance: "
                f"{'on' if Config.ENABLE_MAINTENANCE else 'off'}")

    # Spawned children re-import shared.config, so they get the overrides explicitly
    overrides = {
        "SERVER_HOST": Config.SERVER_HOST,
        "SERVER_PORT": Config.SERVER_PORT,
        "DATABASE_URL": Config.DATABASE_URL,
        "LOG_LEVEL": Config.LOG_LEVEL,
        "ENABLE_MAINTENANCE": Config.ENABLE_MAINTENANCE,
    }

    if not args.simulate:
        run_server(overrides)
        sys.exit(0)

    try:
        multiprocessing.set_start_method("spawn", force=True)
    except RuntimeError:
        pass

    server_process = multiprocessing.Process(target=run_server, args=(overrides,), name="Server")
    client_process = multiprocessing.Process(
        target=run_simulation,
        args=(Config.SERVER_URL, args.driver_id, args.driver_name,
              Config.SIMULATION_INTERVAL, args.events),
        name="Client",
    )

    server_process.start()
    time.sleep(2)  # Give server time to start
    client_process.start()

    try:
        client_process.join()
        server_process.join()
    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
        for proc in (client_process, server_process):
            if proc.is_alive():
                logger.info(f"Terminating {proc.name}...")
                proc.terminate()
                proc.join(timeout=3.0)
