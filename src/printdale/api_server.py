"""
FastAPI Server
REST and WebSocket API for print job submission, queries and live updates
"""

import asyncio
import logging
import socket
import time
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config_manager import ServiceConfig
from .errors import ConversionError, JobNotFoundError, PrintServiceError, ValidationError
from .job_manager import JobManager
from .models import PrintRequest
from .notifier import ConnectionManager
from .printer_manager import PrinterManager


def create_api_app(
    job_manager: JobManager,
    printer_manager: PrinterManager,
    notifier: ConnectionManager,
    config: ServiceConfig,
) -> FastAPI:
    """Create FastAPI application with all endpoints"""

    app = FastAPI(
        title="Printdale Print Service API",
        description="Print job submission, booklet imposition and status tracking",
        version=__version__,
    )

    logger = logging.getLogger(__name__)
    started_at = time.time()

    if config.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=400, content={"detail": exc.to_dict()})

    @app.exception_handler(ConversionError)
    async def conversion_error_handler(request: Request, exc: ConversionError):
        logger.warning(f"Conversion failed for {request.url.path}: {exc}")
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(JobNotFoundError)
    async def not_found_handler(request: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PrintServiceError)
    async def service_error_handler(request: Request, exc: PrintServiceError):
        logger.error(f"Request {request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    # Health check endpoint
    @app.get("/", summary="Health Check")
    async def root():
        return {
            "service": "Printdale Print Service",
            "status": "running",
            "version": __version__,
            "backend": config.backend,
            "timestamp": time.time(),
        }

    # Print job endpoints
    @app.post("/api/prints", status_code=201, summary="Submit Print Job")
    async def submit_print_job(
        file: Optional[UploadFile] = File(None),
        employee_id: Optional[str] = Form(None),
        employee_name: Optional[str] = Form(None),
        file_type: Optional[str] = Form(None),
        printer: Optional[str] = Form(None),
        paper_size: Optional[str] = Form(None),
        copies: Optional[str] = Form(None),
        color_mode: Optional[str] = Form(None),
        sides: Optional[str] = Form(None),
        orientation: Optional[str] = Form(None),
        page_layout: Optional[str] = Form(None),
        margins: Optional[str] = Form(None),
        pages_to_print: Optional[str] = Form(None),
        sheets_from: Optional[str] = Form(None),
        sheets_to: Optional[str] = Form(None),
    ):
        """Upload a document with its print options; returns the Pending job"""
        if file is None or not file.filename:
            raise ValidationError.for_field("file", "File is required")

        content = await file.read()
        if not content:
            raise ValidationError.for_field("file", "File is empty")

        request = PrintRequest.from_form({
            "employee_id": employee_id,
            "employee_name": employee_name,
            "file_name": file.filename,
            "file_type": file_type or file.content_type,
            "printer": printer,
            "paper_size": paper_size,
            "copies": copies,
            "color_mode": color_mode,
            "sides": sides,
            "orientation": orientation,
            "page_layout": page_layout,
            "margins": margins,
            "pages_to_print": pages_to_print,
            "sheets_from": sheets_from,
            "sheets_to": sheets_to,
        })

        logger.info(f"Print request from {request.employee_id}: {request.file_name} -> {request.printer}")
        job = await job_manager.submit_job(request, content)
        return job.model_dump(mode="json")

    @app.get("/api/prints", summary="List All Print Jobs")
    async def list_print_jobs():
        jobs = await job_manager.list_all_jobs()
        return [job.model_dump(mode="json") for job in jobs]

    @app.get("/api/prints/employee/{employee_id}", summary="List Print Jobs For Employee")
    async def list_employee_print_jobs(employee_id: str):
        jobs = await job_manager.list_jobs_by_requester(employee_id)
        return [job.model_dump(mode="json") for job in jobs]

    @app.get("/api/prints/{job_id}", summary="Get Print Job")
    async def get_print_job(job_id: str):
        job = await job_manager.get_job(job_id)
        return job.model_dump(mode="json")

    @app.post("/api/prints/{job_id}/cancel", summary="Cancel Print Job")
    async def cancel_print_job(job_id: str):
        job = await job_manager.cancel_job(job_id)
        return job.model_dump(mode="json")

    # Printer endpoints
    @app.get("/api/printers", summary="Get Enabled Printers")
    async def get_printers():
        printers = await printer_manager.get_printers()
        return {
            "status": "success",
            "printers": printers,
            "count": len(printers),
        }

    # Service management endpoints
    @app.get("/api/status", summary="Get Service Status")
    async def get_service_status():
        return {
            "status": "success",
            "service_info": {
                "running": True,
                "version": __version__,
                "uptime_seconds": time.time() - started_at,
            },
            "job_manager": job_manager.get_status(),
            "printer_manager": printer_manager.get_printer_statistics(),
            "notifier": notifier.get_status(),
        }

    # Live updates
    @app.websocket("/ws/prints")
    async def print_updates(websocket: WebSocket):
        await notifier.connect(websocket)
        try:
            while True:
                # Clients only listen; incoming frames are ignored
                await websocket.receive_text()
        except WebSocketDisconnect:
            notifier.disconnect(websocket)

    return app


class APIServer:
    """Manages the FastAPI server lifecycle"""

    def __init__(
        self,
        job_manager: JobManager,
        printer_manager: PrinterManager,
        notifier: ConnectionManager,
        config: ServiceConfig,
    ):
        self.job_manager = job_manager
        self.printer_manager = printer_manager
        self.notifier = notifier
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.app = None
        self.server = None
        self.server_task = None

    def _check_port_available(self, host: str, port: int) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((host, port))
                return True
        except OSError:
            return False

    async def start_server(self):
        """Start the FastAPI server and serve until stopped"""
        self.app = create_api_app(self.job_manager, self.printer_manager, self.notifier, self.config)

        host = self.config.local_api_host
        port = self.config.local_api_port

        if not self._check_port_available(host, port):
            self.logger.error(f"Port {port} is already in use!")
            raise OSError(f"Port {port} is not available")

        self.logger.info(f"Starting API server on http://{host}:{port}")

        # Import uvicorn here to avoid startup issues
        import uvicorn

        server_config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="error",
            access_log=False,
            loop="asyncio",
        )

        self.server = uvicorn.Server(server_config)
        self.server_task = asyncio.create_task(self.server.serve())

        # Give server a moment to start
        await asyncio.sleep(0.5)
        await self._verify_server_running(host, port)

        self.logger.info(f"API server started on http://{host}:{port}")
        await self.server_task

    async def _verify_server_running(self, host: str, port: int):
        """Verify that the server is actually responding"""
        import aiohttp

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://{host}:{port}/", timeout=aiohttp.ClientTimeout(total=5)) as response:
                    if response.status == 200:
                        self.logger.info("API server verification successful")
                        return True
                    raise RuntimeError(f"health check returned HTTP {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError) as e:
            self.logger.error(f"API server verification failed: {e}")
            raise RuntimeError(f"Server started but not responding: {e}") from e

    async def stop_server(self):
        """Stop the FastAPI server"""
        if not self.server:
            return

        self.logger.info("Stopping API server...")
        self.server.should_exit = True

        if self.server_task and not self.server_task.done():
            try:
                await asyncio.wait_for(self.server_task, timeout=5.0)
            except asyncio.TimeoutError:
                self.server_task.cancel()
            except asyncio.CancelledError:
                pass

        self.logger.info("API server stopped")
