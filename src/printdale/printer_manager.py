"""
Printer Manager
Handles the enabled printer registry, readiness checks and startup health check
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from .backends import PrintBackend
from .config_manager import ServiceConfig
from .errors import PrintServiceError
from .models import DEFAULT_PAPER_SIZE, PAPER_SIZES
from .notifier import ConnectionManager


class PrinterManager:
    """Manages the set of printers jobs may be sent to"""

    def __init__(self, config: ServiceConfig, backend: PrintBackend, notifier: Optional[ConnectionManager] = None):
        self.config = config
        self.backend = backend
        self.notifier = notifier
        self.logger = logging.getLogger(__name__)

        self.printers: List[str] = list(config.printers)
        self.readiness: Dict[str, bool] = {}
        self.last_refresh = 0.0

    async def refresh_printers(self) -> List[str]:
        """Reload the printer list from configuration or the backend"""
        if self.config.device_source == "backend":
            try:
                devices = await self.backend.list_devices()
            except PrintServiceError as e:
                self.logger.error(f"Printer enumeration failed, keeping configured list: {e}")
                devices = []
            if devices:
                self.printers = devices
        else:
            self.printers = list(self.config.printers)

        self.last_refresh = time.time()
        self.logger.info(f"Enabled printers: {', '.join(self.printers) or 'none'}")
        return list(self.printers)

    def is_enabled(self, name: str) -> bool:
        return bool(name) and name.strip().lower() in self.printers

    async def is_printer_available(self, name: str) -> bool:
        """Check if printer is enabled and ready to accept a job"""
        if not self.is_enabled(name):
            return False
        ready = await self.backend.is_device_ready(name.strip().lower())
        self.readiness[name] = ready
        return ready

    async def get_printers(self) -> List[Dict[str, Any]]:
        """Enabled printers with current readiness"""
        results = await asyncio.gather(*(self.backend.is_device_ready(name) for name in self.printers))

        printers = []
        for name, ready in zip(self.printers, results):
            self.readiness[name] = ready
            printers.append({
                "name": name,
                "backend": self.backend.name,
                "is_online": ready,
                "status": "Ready" if ready else "Offline",
                "capabilities": self._get_capabilities(),
            })
        return printers

    def _get_capabilities(self) -> Dict[str, Any]:
        return {
            "paper_sizes": sorted(PAPER_SIZES.values()),
            "default_paper_size": DEFAULT_PAPER_SIZE,
            "color_modes": ["color", "grayscale"],
            "sides": ["single-sided", "double-sided"],
            "orientations": ["portrait", "landscape"],
            "page_layouts": ["normal", "booklet"],
            "margins": ["normal", "narrow"],
        }

    async def startup_health_check(self) -> List[Dict[str, Any]]:
        """Check every enabled printer, retrying with a fixed backoff

        Offline printers are logged, never fatal. The resulting list is
        broadcast to connected clients.
        """
        await self.refresh_printers()

        printers: List[Dict[str, Any]] = []
        attempts = max(1, self.config.startup_retries)
        for attempt in range(1, attempts + 1):
            printers = await self.get_printers()
            offline = [p["name"] for p in printers if not p["is_online"]]
            if not offline:
                self.logger.info(f"All {len(printers)} printers ready")
                break

            self.logger.warning(
                f"Printers not ready (attempt {attempt}/{attempts}): {', '.join(offline)}"
            )
            if attempt < attempts:
                await asyncio.sleep(self.config.startup_backoff)

        if self.notifier:
            await self.notifier.broadcast_device_list(printers)

        return printers

    def get_printer_statistics(self) -> Dict[str, Any]:
        online = [name for name in self.printers if self.readiness.get(name)]
        return {
            "backend": self.backend.name,
            "device_source": self.config.device_source,
            "total_printers": len(self.printers),
            "online_printers": len(online),
            "offline_printers": len(self.printers) - len(online),
            "last_refresh": self.last_refresh,
        }
