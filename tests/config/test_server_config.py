import pytest
import yaml
from pydantic import ValidationError

from nexachat.config import load_server_config
from nexachat.config.cli import parse_cli_args
from nexachat.config.merge import env_layer, merge_layers
from nexachat.config.schema import DEFAULT_ROOMS, ServerConfig


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("NEXACHAT_CONFIG_DIR", str(tmp_path))
    for key in ServerConfig.model_fields:
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_defaults():
    cfg = ServerConfig()
    assert cfg.BACKEND == "sqlite"
    assert cfg.DEFAULT_ROOMS == DEFAULT_ROOMS
    assert cfg.OFFLINE_AFTER_SEC == 300
    assert cfg.TYPING_FRESH_SEC == 5 and cfg.TYPING_EXPIRE_SEC == 10
    assert cfg.RETENTION_HOURS == 24


@pytest.mark.parametrize("field,value", [
    ("HTTP_PORT", 80),
    ("BACKEND", "postgres"),
    ("MESSAGE_WINDOW", 0),
    ("TYPING_FRESH_SEC", 0),
    ("BOT_USERNAME", "bad name"),
    ("DEFAULT_ROOMS", {"has space": None}),
])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        ServerConfig(**{field: value})


def test_port_zero_allowed():
    assert ServerConfig(HTTP_PORT=0).HTTP_PORT == 0


def test_masked_hides_api_key():
    assert ServerConfig(AI_API_KEY="secret").masked()["AI_API_KEY"] == "***"
    assert ServerConfig().masked()["AI_API_KEY"] == ""


def test_env_layer_conversions():
    env = {
        "HTTP_PORT": "9000",
        "RETENTION_HOURS": "1.5",
        "BOT_ENABLED": "no",
        "DEFAULT_ROOMS": "lobby:Main hall, offtopic",
        "MESSAGE_WINDOW": "lots",
        "UNRELATED": "x",
    }
    layer = env_layer(env)
    assert layer == {
        "HTTP_PORT": 9000,
        "RETENTION_HOURS": 1.5,
        "BOT_ENABLED": False,
        "DEFAULT_ROOMS": {"lobby": "Main hall", "offtopic": None},
    }


def test_cli_flags():
    assert parse_cli_args([]) == {}
    args = parse_cli_args(["--port", "0", "--backend", "memory", "--no-bot", "--log-level", "DEBUG"])
    assert args == {"HTTP_PORT": 0, "BACKEND": "memory", "BOT_ENABLED": False, "LOG_LEVEL": "DEBUG"}


def test_merge_right_wins():
    assert merge_layers({"A": 1, "B": 1}, {}, {"B": 2}) == {"A": 1, "B": 2}


def test_load_precedence_file_env_cli(config_dir, monkeypatch):
    (config_dir / "server.yaml").write_text(
        yaml.safe_dump({"HTTP_PORT": 9001, "BACKEND": "memory", "DB_PATH": "from-file.db"}),
        encoding="utf-8",
    )
    monkeypatch.setenv("HTTP_PORT", "9002")
    cfg = load_server_config(["--db-path", "from-cli.db"])
    assert cfg.BACKEND == "memory"
    assert cfg.HTTP_PORT == 9002
    assert cfg.DB_PATH == "from-cli.db"
    assert (config_dir / "server.yaml.bak").exists()


def test_corrupt_file_restores_backup(config_dir):
    path = config_dir / "server.yaml"
    path.write_text(yaml.safe_dump({"HTTP_PORT": 9100}), encoding="utf-8")
    load_server_config([])  # writes the backup

    path.write_text("- just\n- a list\n", encoding="utf-8")
    assert load_server_config([]).HTTP_PORT == 9100
    assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"HTTP_PORT": 9100}


def test_corrupt_file_without_backup_uses_defaults(config_dir):
    (config_dir / "server.yaml").write_text("{unclosed: [", encoding="utf-8")
    assert load_server_config([]).HTTP_PORT == 8080


def test_first_run_writes_defaults(config_dir):
    cfg = load_server_config([])
    assert cfg == ServerConfig()
    written = yaml.safe_load((config_dir / "server.yaml").read_text(encoding="utf-8"))
    assert written["BACKEND"] == "sqlite"
    assert written["DEFAULT_ROOMS"] == DEFAULT_ROOMS
    assert ServerConfig(**written) == cfg
