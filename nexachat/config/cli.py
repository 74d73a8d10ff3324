import argparse


def parse_cli_args(argv: list[str] | None = None) -> dict:
    """
    Parse CLI flags into a dict keyed by ServerConfig names.
    Flags that were not given are left out.
    """
    p = argparse.ArgumentParser(prog="nexachat-server", add_help=True)

    # network
    p.add_argument("--host", dest="HOST")
    p.add_argument("--port", type=int, dest="HTTP_PORT")

    # storage
    p.add_argument("--backend", choices=["memory", "sqlite"], dest="BACKEND")
    p.add_argument("--db-path", dest="DB_PATH")
    p.add_argument("--upload-dir", dest="UPLOAD_DIR")

    # housekeeping
    p.add_argument("--retention-hours", type=float, dest="RETENTION_HOURS")
    p.add_argument("--no-bot", action="store_const", const=False, dest="BOT_ENABLED")

    # misc
    p.add_argument("--log-level", choices=["INFO", "DEBUG", "WARN", "ERROR"], dest="LOG_LEVEL")

    ns = p.parse_args(argv)  # argv=None -> sys.argv[1:]
    return {k: v for k, v in vars(ns).items() if v is not None}


def cli_layer(argv: list[str] | None = None) -> dict:
    return parse_cli_args(argv)
