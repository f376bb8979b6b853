import logging
import os
import secrets
import threading
import time

import psutil
from flask import Flask, jsonify, render_template_string
from flask_socketio import SocketIO, emit

from .status import STATUS, STATUS_LOCK, get_status, update_status

logger = logging.getLogger("LakMiner.web")

INDEX_HTML = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>LAK Miner</title>
<style>
body { background: #111; color: #ddd; font-family: monospace; margin: 2em; }
td { padding: 2px 12px; }
.k { color: #888; }
.ok { color: #5c5; } .bad { color: #c55; } .hi { color: #cc5; }
</style>
</head>
<body>
<h2>LAK Token Mining</h2>
<table>
<tr><td class="k">Status</td><td class="hi" id="status"></td></tr>
<tr><td class="k">Uptime</td><td id="uptime"></td></tr>
<tr><td class="k">Success / Fails</td><td><span class="ok" id="successful_mines"></span> / <span class="bad" id="failed_mines"></span></td></tr>
<tr><td class="k">Total rewards</td><td><span id="total_rewards"></span> LAK</td></tr>
<tr><td class="k">Avg. hashrate</td><td id="avg_hashrate"></td></tr>
<tr><td class="k">Last hash</td><td id="last_hash"></td></tr>
<tr><td class="k">Time bonus</td><td>+<span id="time_bonus"></span></td></tr>
<tr><td class="k">Difficulty</td><td><span id="difficulty_percent"></span> (base <span id="base_difficulty_percent"></span>)</td></tr>
<tr><td class="k">Supply left</td><td><span id="remaining_supply"></span> LAK, <span id="total_mines"></span> mines</td></tr>
<tr><td class="k">Your mines</td><td><span id="miner_mines"></span> (balance <span id="token_balance"></span> LAK)</td></tr>
<tr><td class="k">Nonce</td><td id="nonce"></td></tr>
<tr><td class="k">TX hash</td><td id="tx_hash"></td></tr>
<tr><td class="k">CPU / Memory</td><td><span id="cpu_usage"></span>% / <span id="memory_usage"></span>%</td></tr>
</table>
<form method="post" action="/api/stop"><button type="submit">Stop mining</button></form>
<script src="https://cdn.socket.io/4.7.5/socket.io.min.js"></script>
<script>
const socket = io();
socket.on("status", (s) => {
  for (const [k, v] of Object.entries(s)) {
    const el = document.getElementById(k);
    if (el) el.textContent = (v === null || v === undefined) ? "..." : v;
  }
});
socket.emit("get_status");
</script>
</body>
</html>
"""

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("FLASK_SECRET_KEY", secrets.token_hex(32))
cors_origins = os.environ.get(
    "CORS_ORIGINS", "http://localhost:5000,http://127.0.0.1:5000"
).split(",")
socketio = SocketIO(app, cors_allowed_origins=cors_origins)

# Set by the CLI so /api/stop can reach the mining loop
_miner_state = None

_broadcast_running = False


def set_miner_state(miner_state):
    global _miner_state
    _miner_state = miner_state


def update_performance_metrics():
    """Sample host CPU and memory usage into STATUS"""
    cpu_percent = psutil.cpu_percent(interval=None)
    memory_percent = psutil.virtual_memory().percent
    with STATUS_LOCK:
        STATUS["cpu_usage"] = cpu_percent
        STATUS["memory_usage"] = memory_percent


@app.route("/")
def index():
    return render_template_string(INDEX_HTML)


@app.route("/api/status")
def status_api():
    return jsonify(get_status())


@app.route("/api/stop", methods=["POST"])
def stop_mining():
    """Ask the mining loop to exit after the current round"""
    if _miner_state is None:
        return (
            jsonify(
                {
                    "success": False,
                    "error": "MinerStateNotAvailable",
                    "message": "Miner state not available. Miner may not be running.",
                }
            ),
            503,
        )
    _miner_state.request_shutdown()
    update_status("status", "Stopping after current round...")
    return jsonify({"success": True, "message": "Mining will stop after the current round"})


@socketio.on("connect")
def handle_connect():
    emit("status", get_status())


@socketio.on("get_status")
def handle_get_status():
    emit("status", get_status())


def broadcast_status():
    global _broadcast_running
    _broadcast_running = True
    while _broadcast_running:
        try:
            update_performance_metrics()
            with STATUS_LOCK:
                if STATUS["hash_rate"] > 0:
                    STATUS["hash_rate_history"].append(STATUS["hash_rate"])
            socketio.emit("status", get_status())
        except Exception as e:
            logger.error(f"Error in broadcast_status: {e}")
        time.sleep(2)


def stop_web_server():
    """Stop background threads for web server"""
    global _broadcast_running
    _broadcast_running = False


def start_web_server(host: str = "0.0.0.0", port: int = 5000):
    logger.info("Starting web server on %s:%s", host, port)
    update_status("start_time", time.time())
    update_status("running", True)
    threading.Thread(target=broadcast_status, daemon=True).start()
    try:
        socketio.run(app, host=host, port=port, allow_unsafe_werkzeug=True)
    finally:
        stop_web_server()
