"""
Server bridge - wires storage, background services and the HTTP JSON API
"""
import json
import logging
import re
import threading
import time
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple

from nexachat.bot.ai import AIConfig, TextGenerator
from nexachat.bot.commands import CommandInterpreter
from nexachat.config.schema import ServerConfig
from nexachat.core.bus import EventBus
from nexachat.core.presence import TypingStore, TypingSweeper, TypingSweeperConfig
from nexachat.core.retention import RetentionConfig, RetentionSweeper
from nexachat.db.database import SqliteRepository
from nexachat.db.errors import ChatError, InvalidInput, NotFound
from nexachat.db.memory import MemoryRepository
from nexachat.db.repository import Repository
from .files import URL_PREFIX, FileStore
from .service import ChatService

log = logging.getLogger(__name__)

Query = Dict[str, List[str]]
Result = Tuple[int, Any]


def build_repository(config: ServerConfig) -> Repository:
    bot = dict(
        bot_username=config.BOT_USERNAME if config.BOT_ENABLED else None,
        bot_profile_image=config.BOT_PROFILE_IMAGE,
        offline_after_sec=config.OFFLINE_AFTER_SEC,
    )
    if config.BACKEND == "memory":
        return MemoryRepository(**bot)
    return SqliteRepository(config.DB_PATH, **bot)


def _first(query: Query, key: str, default: Optional[str] = None) -> Optional[str]:
    return query.get(key, [default])[0]


def _require(body: dict, *keys: str) -> List[Any]:
    missing = [k for k in keys if body.get(k) in (None, "")]
    if missing:
        raise InvalidInput(f"missing field(s): {', '.join(missing)}")
    return [body[k] for k in keys]


class APIHandler(BaseHTTPRequestHandler):
    """HTTP API handler. ``service`` and ``files`` are bound per server by HTTPAPIService."""

    service: ChatService
    files: Optional[FileStore] = None
    routes: List[Tuple[str, "re.Pattern[str]", str]] = []

    # === dispatch ===
    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_PATCH(self):
        self._dispatch("PATCH")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def do_OPTIONS(self):
        """CORS preflight"""
        self.send_response(204)
        self._send_cors_headers()
        self.end_headers()

    def _dispatch(self, method: str):
        parsed = urllib.parse.urlparse(self.path)
        query = urllib.parse.parse_qs(parsed.query)
        try:
            if method == "GET" and parsed.path.startswith(URL_PREFIX):
                self._serve_upload(parsed.path)
                return
            for route_method, pattern, name in self.routes:
                match = pattern.fullmatch(parsed.path)
                if match and route_method == method:
                    status, data = getattr(self, name)(*match.groups(), query=query)
                    self._send_json_response(data, status)
                    return
            self._send_error(404, "not-found", "Not Found")
        except ChatError as e:
            self._send_json_response(e.to_dict(), e.status)
        except Exception:
            log.exception("[api] %s %s failed", method, parsed.path)
            self._send_error(500, "internal", "Internal Server Error")

    def _body(self) -> dict:
        length = int(self.headers.get("Content-Length") or 0)
        if not length:
            return {}
        try:
            data = json.loads(self.rfile.read(length).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise InvalidInput("request body is not valid JSON") from None
        if not isinstance(data, dict):
            raise InvalidInput("request body must be a JSON object")
        return data

    # === users ===
    def _list_users(self, query: Query) -> Result:
        return 200, {"users": [u.to_dict() for u in self.service.repo.list_users()]}

    def _online_users(self, query: Query) -> Result:
        return 200, {"users": [u.to_dict() for u in self.service.repo.get_online_users()]}

    def _offline_users(self, query: Query) -> Result:
        return 200, {"users": [u.to_dict() for u in self.service.repo.get_offline_users()]}

    def _create_user(self, query: Query) -> Result:
        body = self._body()
        user = self.service.register_user(body.get("username", ""), body.get("profileImage"),
                                          body.get("status"))
        return 201, user.to_dict()

    def _get_user(self, user_id: str, query: Query) -> Result:
        return 200, self.service.get_user(user_id).to_dict()

    def _update_user(self, user_id: str, query: Query) -> Result:
        body = self._body()
        return 200, self.service.update_profile(user_id, body.get("username", ""),
                                                body.get("profileImage")).to_dict()

    def _delete_user(self, user_id: str, query: Query) -> Result:
        self.service.delete_account(user_id)
        return 200, {"deleted": user_id}

    def _set_status(self, user_id: str, query: Query) -> Result:
        (status,) = _require(self._body(), "status")
        return 200, self.service.set_status(user_id, status).to_dict()

    def _bootstrap_admin(self, user_id: str, query: Query) -> Result:
        return 200, self.service.bootstrap_admin(user_id).to_dict()

    def _grant_admin(self, user_id: str, query: Query) -> Result:
        body = self._body()
        (admin_id,) = _require(body, "adminId")
        return 200, self.service.grant_admin(admin_id, user_id, bool(body.get("isAdmin", True))).to_dict()

    def _ban_user(self, user_id: str, query: Query) -> Result:
        body = self._body()
        (admin_id,) = _require(body, "adminId")
        return 200, self.service.ban_user(admin_id, user_id, body.get("duration")).to_dict()

    # === rooms ===
    def _list_rooms(self, query: Query) -> Result:
        return 200, {"rooms": [r.to_dict() for r in self.service.repo.list_rooms()]}

    def _create_room(self, query: Query) -> Result:
        body = self._body()
        admin_id, name = _require(body, "adminId", "name")
        return 201, self.service.create_room(admin_id, name, body.get("description")).to_dict()

    def _get_room(self, room_id: str, query: Query) -> Result:
        return 200, self.service.get_room(room_id).to_dict()

    def _delete_room(self, room_id: str, query: Query) -> Result:
        admin_id = _first(query, "adminId") or self._body().get("adminId")
        if not admin_id:
            raise InvalidInput("missing field(s): adminId")
        self.service.delete_room(admin_id, room_id)
        return 200, {"deleted": room_id}

    def _room_messages(self, room_id: str, query: Query) -> Result:
        limit = _first(query, "limit")
        try:
            limit = int(limit) if limit is not None else None
        except ValueError:
            raise InvalidInput("limit must be an integer") from None
        return 200, {"messages": [v.to_dict() for v in self.service.messages(room_id, limit)]}

    def _post_message(self, room_id: str, query: Query) -> Result:
        body = self._body()
        (user_id,) = _require(body, "userId")
        view = self.service.post_message(
            room_id, user_id, body.get("content"), body.get("messageType") or "text",
            file_name=body.get("fileName"),
            file_path=body.get("filePath"),
            file_size=body.get("fileSize"),
            file_group_id=body.get("fileGroupId"),
            group_index=body.get("groupIndex"),
            reply_to_id=body.get("replyToId"),
            poll=body.get("poll"),
            attachments=body.get("attachments"),
        )
        return 201, view.to_dict()

    def _typing(self, room_id: str, query: Query) -> Result:
        return 200, {"typing": [t.to_dict() for t in self.service.typing_in(room_id)]}

    def _set_typing(self, room_id: str, query: Query) -> Result:
        body = self._body()
        (user_id,) = _require(body, "userId")
        self.service.set_typing(user_id, room_id, bool(body.get("typing", True)))
        return 200, {"ok": True}

    # === messages ===
    def _edit_message(self, message_id: str, query: Query) -> Result:
        user_id, content = _require(self._body(), "userId", "content")
        return 200, self.service.edit_message(message_id, user_id, content).to_dict()

    def _delete_message(self, message_id: str, query: Query) -> Result:
        user_id = _first(query, "userId") or self._body().get("userId")
        if not user_id:
            raise InvalidInput("missing field(s): userId")
        self.service.delete_message(message_id, user_id)
        return 200, {"deleted": message_id}

    def _vote(self, message_id: str, query: Query) -> Result:
        body = self._body()
        (user_id,) = _require(body, "userId")
        if body.get("optionIndex") is None:
            raise InvalidInput("missing field(s): optionIndex")
        return 200, self.service.vote(message_id, user_id, body["optionIndex"]).to_dict()

    def _react(self, message_id: str, query: Query) -> Result:
        user_id, emoji = _require(self._body(), "userId", "emoji")
        return 200, {"added": self.service.react(message_id, user_id, emoji)}

    # === direct messages ===
    def _open_dm(self, query: Query) -> Result:
        user_id, other_id = _require(self._body(), "userId", "otherId")
        return 200, self.service.open_dm(user_id, other_id).to_dict()

    def _list_dms(self, query: Query) -> Result:
        user_id = _first(query, "userId")
        if not user_id:
            raise InvalidInput("missing field(s): userId")
        return 200, {"rooms": [r.to_dict() for r in self.service.list_dms(user_id)]}

    def _add_dm_participant(self, room_id: str, query: Query) -> Result:
        (user_id,) = _require(self._body(), "userId")
        return 200, self.service.add_to_dm(room_id, user_id).to_dict()

    def _remove_dm_participant(self, room_id: str, user_id: str, query: Query) -> Result:
        return 200, self.service.leave_dm(room_id, user_id).to_dict()

    # === files / stats ===
    def _upload(self, query: Query) -> Result:
        if self.files is None:
            raise NotFound("uploads are disabled")
        name = self.headers.get("X-Filename") or _first(query, "name")
        if not name:
            raise InvalidInput("missing X-Filename header")
        length = int(self.headers.get("Content-Length") or 0)
        if length > self.files.max_bytes:
            raise InvalidInput(f"file exceeds {self.files.max_bytes} bytes")
        stored = self.files.save(urllib.parse.unquote(name), self.rfile.read(length))
        return 201, stored.to_dict()

    def _serve_upload(self, path: str):
        target = self.files.resolve(path) if self.files is not None else None
        if target is None or not target.is_file():
            self._send_error(404, "not-found", "Not Found")
            return
        data = target.read_bytes()
        self.send_response(200)
        self._send_cors_headers()
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _stats(self, query: Query) -> Result:
        return 200, self.service.stats()

    def _health(self, query: Query) -> Result:
        return 200, {"status": "ok"}

    # === responses ===
    def _send_json_response(self, data: Any, status: int = 200):
        payload = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self._send_cors_headers()
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _send_cors_headers(self):
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, PATCH, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type, X-Filename")

    def _send_error(self, status: int, code: str, message: str):
        self._send_json_response({"error": message, "code": code, "status": status}, status)

    def log_message(self, format, *args):
        log.debug("[api] %s - %s", self.address_string(), format % args)


_ID = r"([^/]+)"
APIHandler.routes = [
    (method, re.compile(pattern), name)
    for method, pattern, name in [
        ("GET", r"/health", "_health"),
        ("GET", r"/api/users", "_list_users"),
        ("POST", r"/api/users", "_create_user"),
        ("GET", r"/api/users/online", "_online_users"),
        ("GET", r"/api/users/offline", "_offline_users"),
        ("GET", rf"/api/users/{_ID}", "_get_user"),
        ("PATCH", rf"/api/users/{_ID}", "_update_user"),
        ("DELETE", rf"/api/users/{_ID}", "_delete_user"),
        ("PATCH", rf"/api/users/{_ID}/status", "_set_status"),
        ("POST", rf"/api/users/{_ID}/admin/bootstrap", "_bootstrap_admin"),
        ("POST", rf"/api/users/{_ID}/admin", "_grant_admin"),
        ("POST", rf"/api/users/{_ID}/ban", "_ban_user"),
        ("GET", r"/api/rooms", "_list_rooms"),
        ("POST", r"/api/rooms", "_create_room"),
        ("GET", rf"/api/rooms/{_ID}", "_get_room"),
        ("DELETE", rf"/api/rooms/{_ID}", "_delete_room"),
        ("GET", rf"/api/rooms/{_ID}/messages", "_room_messages"),
        ("POST", rf"/api/rooms/{_ID}/messages", "_post_message"),
        ("GET", rf"/api/rooms/{_ID}/typing", "_typing"),
        ("POST", rf"/api/rooms/{_ID}/typing", "_set_typing"),
        ("PATCH", rf"/api/messages/{_ID}", "_edit_message"),
        ("DELETE", rf"/api/messages/{_ID}", "_delete_message"),
        ("POST", rf"/api/messages/{_ID}/vote", "_vote"),
        ("POST", rf"/api/messages/{_ID}/reactions", "_react"),
        ("GET", r"/api/dm", "_list_dms"),
        ("POST", r"/api/dm", "_open_dm"),
        ("POST", rf"/api/dm/{_ID}/participants", "_add_dm_participant"),
        ("DELETE", rf"/api/dm/{_ID}/participants/{_ID}", "_remove_dm_participant"),
        ("POST", r"/api/upload", "_upload"),
        ("GET", r"/api/stats", "_stats"),
    ]
]


class HTTPAPIService:
    """HTTP API service on a ThreadingHTTPServer"""

    def __init__(self, host: str, port: int, service: ChatService, files: Optional[FileStore] = None):
        self.host = host
        self.port = port
        self.handler = type("BoundAPIHandler", (APIHandler,), {"service": service, "files": files})
        self.server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self.server = ThreadingHTTPServer((self.host, self.port), self.handler)
        self.server.daemon_threads = True
        # port 0 asks the OS for a free port
        self.port = self.server.server_address[1]
        self._thread = threading.Thread(target=self.server.serve_forever, name="http-api", daemon=True)
        self._thread.start()
        log.info("[server] HTTP API listening on http://%s:%s", self.host, self.port)

    def stop(self):
        if self.server:
            self.server.shutdown()
            self.server.server_close()
        if self._thread:
            self._thread.join(timeout=1.0)


class ServerBridge:
    """Owns every long-lived component of a running server."""

    def __init__(self, config: ServerConfig, repo: Optional[Repository] = None,
                 session_factory: Callable[[], Any] = None):
        self.config = config
        self.repo = repo or build_repository(config)
        self.files = FileStore(config.UPLOAD_DIR, config.MAX_UPLOAD_BYTES)
        self.typing = TypingStore(config.TYPING_FRESH_SEC, config.TYPING_EXPIRE_SEC)
        self.bus = EventBus()

        interpreter = None
        if config.BOT_ENABLED:
            generator = None
            if config.AI_API_KEY:
                ai = AIConfig(api_key=config.AI_API_KEY, endpoint=config.AI_ENDPOINT,
                              timeout=config.AI_TIMEOUT_SEC)
                generator = TextGenerator(ai, session_factory() if session_factory else None)
            interpreter = CommandInterpreter(generator)

        self.service = ChatService(
            self.repo, self.typing, files=self.files, bus=self.bus, interpreter=interpreter,
            max_content_length=config.MAX_CONTENT_LENGTH, message_window=config.MESSAGE_WINDOW,
        )
        self.typing_sweeper = TypingSweeper(
            TypingSweeperConfig(interval_sec=config.TYPING_SWEEP_INTERVAL_SEC), self.typing)
        self.retention = RetentionSweeper(
            RetentionConfig(horizon_hours=config.RETENTION_HOURS,
                            interval_sec=config.RETENTION_INTERVAL_SEC),
            self.repo, self.files)
        self.api_service = HTTPAPIService(config.HOST, config.HTTP_PORT, self.service, self.files)

    @property
    def port(self) -> int:
        return self.api_service.port

    def start(self):
        log.info("[server] NexaChat starting (backend=%s)", self.config.BACKEND)
        self.repo.ensure_rooms(self.config.DEFAULT_ROOMS)
        self.bus.start()
        self.typing_sweeper.start()
        self.retention.start()
        self.api_service.start()

    def stop(self):
        log.info("[server] stopping...")
        self.api_service.stop()
        self.retention.stop()
        self.typing_sweeper.stop()
        self.bus.stop()
        log.info("[server] stopped")

    def get_stats(self) -> dict:
        return self.service.stats()


def main(argv=None):
    """Run the server standalone"""
    from nexachat.config import load_server_config

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = load_server_config(argv)
    logging.getLogger().setLevel(config.LOG_LEVEL)
    server = ServerBridge(config)
    try:
        server.start()
        log.info("[server] running, Ctrl+C to stop")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        server.stop()


if __name__ == "__main__":
    main()
