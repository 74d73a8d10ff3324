import os, yaml, tempfile, json, fcntl, logging
from pathlib import Path
from typing import Tuple

log = logging.getLogger(__name__)

CONFIG_DIR_ENV = "NEXACHAT_CONFIG_DIR"
CONFIG_NAME = "server.yaml"


def get_config_dir() -> Path:
    override = os.environ.get(CONFIG_DIR_ENV)
    return Path(override) if override else Path.home() / ".nexachat"


def ensure_dir(p: Path) -> None:
    p.mkdir(mode=0o700, parents=True, exist_ok=True)


def config_paths() -> Tuple[Path, Path, Path]:
    """(config file, last good copy, lock file)"""
    d = get_config_dir()
    return d / CONFIG_NAME, d / f"{CONFIG_NAME}.bak", d / "server.lock"


def read_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must hold a mapping, got {type(data).__name__}")
    return data


def atomic_write_yaml(path: Path, data: dict) -> None:
    """Write via a temp file in the same directory, then rename over the target."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            yaml.safe_dump(data, tmp, sort_keys=False, allow_unicode=True)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


class FileLock:
    """Exclusive flock on a sidecar file, held for the duration of the with-block."""

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        self._fh = None

    def __enter__(self):
        # the lock file stays on disk: every process must flock the same inode
        self._fh = open(self.lock_path, "a")
        fcntl.flock(self._fh.fileno(), fcntl.LOCK_EX)
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None


def backup(path: Path, bak: Path) -> None:
    if path.exists():
        bak.write_bytes(path.read_bytes())


def restore_backup(path: Path, bak: Path) -> bool:
    if not bak.exists():
        return False
    log.warning("[config] restoring %s from %s", path.name, bak.name)
    path.write_bytes(bak.read_bytes())
    return True


def dump_effective_log(effective: dict) -> None:
    log.info("[config] effective:\n%s", json.dumps(effective, ensure_ascii=False, indent=2))
