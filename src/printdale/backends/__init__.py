"""
Print backends
"""

from ..config_manager import ServiceConfig
from ..process_runner import ProcessRunner
from .base import BackendStatus, PrintBackend, PrintOptions
from .cups import CupsBackend
from .spooler import SpoolerBackend

BACKENDS = {
    CupsBackend.name: CupsBackend,
    SpoolerBackend.name: SpoolerBackend,
}


def create_backend(config: ServiceConfig, runner: ProcessRunner = None) -> PrintBackend:
    """Instantiate the backend selected by configuration"""
    try:
        backend_class = BACKENDS[config.backend]
    except KeyError:
        raise ValueError(f"Unknown backend '{config.backend}'") from None
    return backend_class(config, runner or ProcessRunner(config.command_timeout))


__all__ = [
    "BackendStatus",
    "CupsBackend",
    "PrintBackend",
    "PrintOptions",
    "SpoolerBackend",
    "create_backend",
]
