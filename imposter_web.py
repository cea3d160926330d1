import os
import asyncio
import logging
import argparse
from threading import Thread
from typing import Any, Callable, Dict, Optional

from flask import Flask, current_app, jsonify, request

from imposter import SessionController, ValidationError, WordSource

log = logging.getLogger(__name__)


# =========================
# CONFIG
# =========================
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
COMMAND_TIMEOUT = 5.0


# =========================
# LOOP HOST
# =========================
class GameHost:
    """Runs a SessionController on a private asyncio loop.

    Flask serves requests on worker threads; every command is handed to the
    loop thread so state changes and timer ticks never interleave.
    """

    def __init__(self, controller: Optional[SessionController] = None, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.controller = controller or SessionController()
        self.loop = loop or asyncio.new_event_loop()
        self._thread: Optional[Thread] = None

    def start(self) -> "GameHost":
        if self._thread and self._thread.is_alive():
            return self
        self._thread = Thread(target=self._run, name="imposter-loop", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def stop(self) -> None:
        if not self._thread:
            return
        log.info("stopping game loop")
        if self.loop.is_running():
            self.call(lambda c: c.close())
            self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=COMMAND_TIMEOUT)
        self._thread = None
        self.loop.close()

    def call(self, command: Callable[[SessionController], Any]) -> Dict[str, Any]:
        """Run ``command`` on the loop thread and return the resulting snapshot."""
        async def run() -> Dict[str, Any]:
            command(self.controller)
            return self.controller.snapshot()

        fut = asyncio.run_coroutine_threadsafe(run(), self.loop)
        return fut.result(timeout=COMMAND_TIMEOUT)


# =========================
# WEB
# =========================
def create_app(host: GameHost) -> Flask:
    app = Flask(__name__)
    app.config["GAME_HOST"] = host

    def game() -> GameHost:
        return current_app.config["GAME_HOST"]

    def command(fn: Callable[[SessionController], Any]):
        try:
            return jsonify(game().call(fn))
        except ValidationError as exc:
            log.info("rejected: %s", exc)
            return jsonify({"error": str(exc)}), 400

    @app.get("/")
    def home():
        return "OK", 200

    @app.get("/health")
    def health():
        return "healthy", 200

    @app.get("/api/state")
    def state():
        return command(lambda c: None)

    @app.post("/api/players")
    def add_player():
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            return jsonify({"error": "expected JSON body with a 'name' string"}), 400
        name = data["name"]
        return command(lambda c: c.add_participant(name))

    @app.delete("/api/players/<path:name>")
    def remove_player(name: str):
        return command(lambda c: c.remove_participant(name))

    @app.post("/api/start")
    def start():
        return command(lambda c: c.start_game())

    @app.post("/api/round")
    def new_round():
        return command(lambda c: c.new_round())

    @app.post("/api/cards/<int:index>/toggle")
    def toggle_card(index: int):
        return command(lambda c: c.toggle_reveal(index))

    @app.post("/api/first-player/shuffle")
    def shuffle_first():
        return command(lambda c: c.shuffle_first_player())

    @app.post("/api/first-player/toggle")
    def toggle_first():
        return command(lambda c: c.toggle_first_player())

    @app.post("/api/reset")
    def reset():
        return command(lambda c: c.reset_session())

    return app


# =========================
# ENTRY
# =========================
def main(argv=None) -> None:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    parser = argparse.ArgumentParser(description="Imposter party game (single device)")
    parser.add_argument("--host", default=os.getenv("HOST", DEFAULT_HOST), help="Address to bind")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", str(DEFAULT_PORT))), help="Port to listen on")
    parser.add_argument("--words", default=os.getenv("IMPOSTER_WORDS_FILE", "words.txt"), help="Word list file")
    args = parser.parse_args(argv)

    words = WordSource.from_file(args.words)
    host = GameHost(SessionController(words=words)).start()
    app = create_app(host)

    print(f"Imposter running at http://{args.host}:{args.port} ({len(words)} words)")
    try:
        app.run(host=args.host, port=args.port, threaded=True)
    finally:
        host.stop()


if __name__ == "__main__":
    main()
