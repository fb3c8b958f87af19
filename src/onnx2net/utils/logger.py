from __future__ import annotations

import logging
import os

_ENV_LEVEL = "ONNX2NET_LOG_LEVEL"
_FORMAT = "[%(asctime)s] [onnx2net] [%(levelname)s] %(name)s: %(message)s"

_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger("onnx2net")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(os.environ.get(_ENV_LEVEL, "WARNING").upper())
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``onnx2net`` hierarchy."""
    _configure_root()
    if not name.startswith("onnx2net"):
        name = f"onnx2net.{name}"
    return logging.getLogger(name)


def set_verbosity(level: int | str) -> None:
    _configure_root()
    logging.getLogger("onnx2net").setLevel(level)
