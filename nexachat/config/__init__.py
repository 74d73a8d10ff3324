import logging

import yaml

from .io import (
    config_paths, ensure_dir, read_yaml, atomic_write_yaml, backup, restore_backup, dump_effective_log, FileLock,
)
from .merge import merge_layers, env_layer
from .schema import ServerConfig
from .cli import cli_layer

log = logging.getLogger(__name__)


def load_server_config(argv: list[str] | None = None) -> ServerConfig:
    path, bak, lock = config_paths()
    ensure_dir(path.parent)

    file_cfg = {}
    file_ok = False
    if not path.exists():
        # first run: write the defaults so there is a file to edit
        with FileLock(lock):
            atomic_write_yaml(path, ServerConfig().model_dump())
        log.info("[config] wrote default config to %s", path)
    else:
        # corrupt file: fall back to the last good backup
        with FileLock(lock):
            try:
                file_cfg = read_yaml(path)
                file_ok = True
            except (OSError, ValueError, yaml.YAMLError) as e:
                log.warning("[config] %s unreadable (%s), trying backup", path, e)
                if restore_backup(path, bak):
                    file_cfg = read_yaml(path)
                    file_ok = True

    # file < ENV < CLI
    merged = merge_layers(file_cfg, env_layer(), cli_layer(argv))
    model = ServerConfig(**merged)

    # only a file that parsed becomes the new backup
    if file_ok:
        backup(path, bak)

    dump_effective_log(model.masked())
    return model


__all__ = ["ServerConfig", "load_server_config"]
