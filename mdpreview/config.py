from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError

MODES = ("serve", "watch", "build")
DEFAULT_PORT = 3000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_OUT_DIR = "dist"


@dataclass(frozen=True)
class ServerConfig:
    """Process-wide settings, fixed once the command line is parsed."""

    mode: str
    target: str
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    out_dir: str = DEFAULT_OUT_DIR
    # build mode only: the target is a directory rather than a single file
    target_is_dir: bool = False
    rebuild_on_change: bool = False

    @property
    def target_path(self) -> Path:
        return Path(self.target)


def normalize_target(target):
    # Keep relative targets relative so store keys match request paths such
    # as /docs/a.md, but collapse "./docs/" style spellings.
    text = Path(target).as_posix()
    if text != "/":
        text = text.rstrip("/")
    return text or "."


def validate_port(port):
    if port is None:
        return DEFAULT_PORT
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigError(f"Port must be an integer, got {port!r}")
    if port < 0 or port > 65535:
        raise ConfigError(f"Port must be between 0 and 65535, got {port}")
    return port


def build_config(
    mode,
    file=None,
    dir=None,
    port=None,
    host=DEFAULT_HOST,
    out=DEFAULT_OUT_DIR,
    watch=False,
):
    """Validate parsed command-line values and freeze them."""
    if mode not in MODES:
        raise ConfigError(f"Unknown command: {mode}")
    if mode == "serve":
        if not file:
            raise ConfigError("serve requires --file")
        return ServerConfig(
            mode=mode,
            target=normalize_target(file),
            port=validate_port(port),
            host=host,
        )
    if mode == "watch":
        if not dir:
            raise ConfigError("watch requires --dir")
        return ServerConfig(
            mode=mode,
            target=normalize_target(dir),
            port=validate_port(port),
            host=host,
        )
    if (file is None) == (dir is None):
        raise ConfigError("build requires exactly one of --file or --dir")
    if not out:
        raise ConfigError("build requires a non-empty --out directory")
    return ServerConfig(
        mode=mode,
        target=normalize_target(file if file is not None else dir),
        port=0,
        host=host,
        out_dir=out,
        target_is_dir=dir is not None,
        rebuild_on_change=bool(watch),
    )
