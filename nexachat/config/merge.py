import os

from .schema import ServerConfig

# type tables for environment conversion
INT_KEYS = {"CONFIG_VERSION", "HTTP_PORT", "MAX_UPLOAD_BYTES", "MESSAGE_WINDOW", "MAX_CONTENT_LENGTH"}
FLOAT_KEYS = {
    "OFFLINE_AFTER_SEC", "TYPING_FRESH_SEC", "TYPING_EXPIRE_SEC", "TYPING_SWEEP_INTERVAL_SEC",
    "RETENTION_HOURS", "RETENTION_INTERVAL_SEC", "AI_TIMEOUT_SEC",
}
BOOL_KEYS = {"BOT_ENABLED"}
# DEFAULT_ROOMS=name[:description],name[:description]
ROOM_LIST_KEYS = {"DEFAULT_ROOMS"}


def _to_bool(s: str) -> bool:
    return str(s).strip().lower() in ("1", "true", "yes", "on", "y", "t")


def _to_rooms(s: str) -> dict:
    rooms = {}
    for item in s.split(","):
        name, _, description = item.strip().partition(":")
        if name:
            rooms[name.strip()] = description.strip() or None
    return rooms


def env_layer(environ=None) -> dict:
    """
    Environment overrides, same upper-case names as ServerConfig.
    Unparsable numbers are skipped; literal choices are validated by the schema.
    """
    environ = os.environ if environ is None else environ
    out: dict = {}
    for k in ServerConfig.model_fields:
        if k not in environ:
            continue
        raw = environ[k]
        if k in INT_KEYS:
            try:
                out[k] = int(raw)
            except ValueError:
                pass
        elif k in FLOAT_KEYS:
            try:
                out[k] = float(raw)
            except ValueError:
                pass
        elif k in BOOL_KEYS:
            out[k] = _to_bool(raw)
        elif k in ROOM_LIST_KEYS:
            out[k] = _to_rooms(raw)
        else:
            out[k] = raw
    return out


def merge_layers(*layers: dict) -> dict:
    """
    Left to right, right wins.
    e.g. merge_layers(file, env, cli) -> CLI has the final say
    """
    result: dict = {}
    for layer in layers:
        if not layer:
            continue
        result.update(layer)
    return result
