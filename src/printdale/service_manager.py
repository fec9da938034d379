"""
Service Manager
Main orchestrator that wires and runs all service components
"""

import asyncio
import logging
import time
from typing import List, Optional

from . import __version__
from .api_server import APIServer
from .backends import PrintBackend, create_backend
from .config_manager import ServiceConfig
from .converter import DocumentConverter
from .document_store import DocumentStore
from .job_manager import JobManager
from .job_store import JobStore
from .notifier import ConnectionManager
from .printer_manager import PrinterManager
from .process_runner import ProcessRunner
from .status_monitor import StatusMonitor


class PrintService:
    """Main service orchestrator that manages all components"""

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

        # Service state
        self.running = False
        self.start_time: Optional[float] = None

        # Components
        self.runner: Optional[ProcessRunner] = None
        self.backend: Optional[PrintBackend] = None
        self.notifier: Optional[ConnectionManager] = None
        self.printer_manager: Optional[PrinterManager] = None
        self.store: Optional[JobStore] = None
        self.monitor: Optional[StatusMonitor] = None
        self.job_manager: Optional[JobManager] = None
        self.api_server: Optional[APIServer] = None

        self.tasks: List[asyncio.Task] = []

    def initialize_components(self):
        """Build every component from the configuration snapshot"""
        self.logger.info("Initializing service components...")

        self.runner = ProcessRunner(self.config.command_timeout)
        self.backend = create_backend(self.config, self.runner)
        self.logger.info(f"Print backend: {self.backend.name}")

        self.notifier = ConnectionManager()
        self.printer_manager = PrinterManager(self.config, self.backend, self.notifier)
        self.store = JobStore(self.config.database_path)
        self.monitor = StatusMonitor(self.store, self.backend, self.notifier, self.config)

        self.job_manager = JobManager(
            store=self.store,
            document_store=DocumentStore(self.config.upload_base_path),
            converter=DocumentConverter(
                self.runner,
                soffice_path=self.config.soffice_path,
                timeout=self.config.conversion_timeout,
                temp_directory=self.config.temp_directory,
            ),
            backend=self.backend,
            printer_manager=self.printer_manager,
            monitor=self.monitor,
            notifier=self.notifier,
        )

        self.api_server = APIServer(self.job_manager, self.printer_manager, self.notifier, self.config)
        self.logger.info("All components initialized")

    async def run(self):
        """Main service entry point"""
        self.running = True
        self.start_time = time.time()

        self.logger.info("=" * 60)
        self.logger.info(f"Printdale Print Service {__version__}")
        self.logger.info("=" * 60)

        try:
            self.initialize_components()

            printers = await self.printer_manager.startup_health_check()
            self._display_startup_info(printers)

            self.tasks = [
                asyncio.create_task(self.api_server.start_server(), name="api_server"),
            ]
            await asyncio.gather(*self.tasks)

        except asyncio.CancelledError:
            self.logger.info("Service tasks cancelled")
        finally:
            await self.stop()

    def _display_startup_info(self, printers):
        online = [p for p in printers if p.get("is_online")]

        self.logger.info(f"Backend: {self.config.backend}")
        self.logger.info(f"Local API: http://{self.config.local_api_host}:{self.config.local_api_port}")
        self.logger.info(f"Poll Interval: {self.config.poll_interval}s (max {self.config.max_poll_duration:.0f}s per job)")
        self.logger.info("-" * 40)
        self.logger.info(f"Printers: {len(printers)} enabled, {len(online)} ready")
        for printer in printers:
            state = "ready" if printer.get("is_online") else "offline"
            self.logger.info(f"  {printer['name']}: {state}")
        self.logger.info("-" * 40)

    async def stop(self):
        """Stop all service components gracefully"""
        if not self.running:
            return

        self.running = False
        self.logger.info("Stopping Printdale Print Service...")

        for task in self.tasks:
            if not task.done():
                self.logger.debug(f"Cancelling task: {task.get_name()}")
                task.cancel()

        if self.tasks:
            try:
                await asyncio.wait_for(asyncio.gather(*self.tasks, return_exceptions=True), timeout=10.0)
            except asyncio.TimeoutError:
                self.logger.warning("Task cancellation timeout")

        if self.job_manager:
            await self.job_manager.shutdown()

        if self.api_server:
            await self.api_server.stop_server()

        if self.start_time:
            self.logger.info(f"Service uptime: {time.time() - self.start_time:.1f} seconds")

        self.logger.info("Printdale Print Service stopped")
