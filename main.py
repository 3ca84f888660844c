"""
main.py: UPSC CBT server entry point

Starts uvicorn in a background thread, waits until the port accepts
connections, then opens the exam screen in the default browser.
Set OPEN_BROWSER=0 to run headless (server deployments).
"""

import logging
import os
import socket
import sys
import threading
import time
import traceback
import webbrowser

from config import BASE_DIR, DEFAULT_HOST, DEFAULT_PORT, LOG_FILE

# ── logging ──────────────────────────────────────────────────────────────────

try:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
except PermissionError:
    # log file locked by another process: console only
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)

# ── server helpers ───────────────────────────────────────────────────────────

def _pick_port(preferred: int) -> int:
    """Preferred port if it is free, otherwise any free one."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((DEFAULT_HOST, preferred))
        except OSError:
            s.bind((DEFAULT_HOST, 0))
        return s.getsockname()[1]


def _wait_for_server(port: int, timeout: float = 15.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with socket.create_connection((DEFAULT_HOST, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False


def _start_server(port: int) -> None:
    try:
        import uvicorn
        from api.app import create_app
        logger.info(f"Starting uvicorn on {DEFAULT_HOST}:{port}")
        uvicorn.run(create_app(), host=DEFAULT_HOST, port=port, log_level="warning")
    except Exception:
        logger.error(f"Server crashed:\n{traceback.format_exc()}")


# ── main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("=== UPSC CBT started ===")
    os.chdir(BASE_DIR)

    port = _pick_port(DEFAULT_PORT)
    server_thread = threading.Thread(target=_start_server, args=(port,), daemon=True)
    server_thread.start()

    if not _wait_for_server(port):
        logger.error("Server did not come up in time. Is another instance still running?")
        sys.exit(1)

    url = f"http://{DEFAULT_HOST}:{port}"
    logger.info(f"Server ready at {url}")
    if os.getenv("OPEN_BROWSER", "1") != "0":
        webbrowser.open(url)

    try:
        while server_thread.is_alive():
            time.sleep(10)
    except KeyboardInterrupt:
        logger.info("Stopped by user")
