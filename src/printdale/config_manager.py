"""
Configuration Manager
Handles all service configuration with automatic defaults
"""

import json
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

BACKENDS = ("cups", "spooler")
DEVICE_SOURCES = ("config", "backend")
DEFAULT_PRINTER = "ricoh-m2701"

# Environment variable -> (config key, parser)
ENV_OVERRIDES = {
    "PRINTDALE_BACKEND": ("backend", str),
    "PRINTERS": ("printers", lambda value: [p.strip().lower() for p in value.split(",") if p.strip()]),
    "CUPS_SERVER": ("cups_server", str),
    "CUPS_ADMIN_USERNAME": ("cups_user", str),
    "UPLOAD_BASE_PATH": ("upload_base_path", str),
    "PRINTDALE_DB_PATH": ("database_path", str),
    "PRINTDALE_API_PORT": ("local_api_port", int),
    "PRINTDALE_LOG_LEVEL": ("log_level", str),
}


@dataclass(frozen=True)
class ServiceConfig:
    """Immutable configuration snapshot handed to every component"""

    backend: str = "cups"
    printers: Tuple[str, ...] = (DEFAULT_PRINTER,)
    device_source: str = "config"

    cups_server: str = "localhost"
    cups_port: int = 631
    cups_user: str = "admin"
    cups_page_log: str = "/var/log/cups/page_log"
    sumatra_path: str = "SumatraPDF.exe"
    powershell_path: str = "powershell"
    soffice_path: str = "soffice"

    upload_base_path: str = "uploads"
    database_path: str = "data/printdale.db"
    temp_directory: Optional[str] = None

    poll_interval: float = 2.0
    max_poll_duration: float = 3600.0
    command_timeout: float = 30.0
    conversion_timeout: float = 120.0
    startup_retries: int = 3
    startup_backoff: float = 5.0

    local_api_host: str = "127.0.0.1"
    local_api_port: int = 8081
    enable_cors: bool = True

    log_level: str = "INFO"
    log_directory: str = "logs"

    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def cups_uri(self) -> str:
        return f"ipp://{self.cups_server}:{self.cups_port}"


class ConfigManager:
    """Manages service configuration with automatic setup"""

    def __init__(self, config_path: str = None):
        self.logger = logging.getLogger(__name__)

        # Determine configuration path
        if config_path:
            self.config_path = Path(config_path)
        elif os.environ.get('PRINTDALE_CONFIG'):
            self.config_path = Path(os.environ['PRINTDALE_CONFIG'])
        else:
            self.config_path = Path(os.path.expanduser('~')) / ".printdale" / "config.json"

        self.config_dir = self.config_path.parent

        # Create all required directories
        self._create_directories()

        # Load or create configuration
        self._load_config()

    def _create_directories(self):
        """Create all required directories"""
        directories = [
            self.config_dir,
            self.config_dir / "logs",
            self.config_dir / "temp",
            self.config_dir / "uploads",
            self.config_dir / "data",
        ]

        for directory in directories:
            try:
                directory.mkdir(parents=True, exist_ok=True)
                self.logger.debug(f"Directory ensured: {directory}")
            except OSError as e:
                self.logger.error(f"Failed to create directory {directory}: {e}")

    def _load_config(self):
        """Load configuration from file or create default"""
        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    self.config = json.load(f)
                self.logger.info("Configuration loaded successfully")

                # Ensure all required keys exist
                default_config = self._create_default_config()
                missing = [key for key in default_config if key not in self.config]
                for key in missing:
                    self.config[key] = default_config[key]
                    self.logger.info(f"Added missing config key: {key}")
                if missing:
                    self._save_config()

            else:
                self.config = self._create_default_config()
                self._save_config()
                self.logger.info("Default configuration created")

        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Configuration load error: {e}")
            self.config = self._create_default_config()
            self._save_config()

    def _create_default_config(self) -> Dict[str, Any]:
        """Create default configuration"""
        return {
            # Backend selection (fixed for the life of the process)
            "backend": "cups",
            "printers": [DEFAULT_PRINTER],
            "device_source": "config",

            # CUPS / IPP
            "cups_server": "localhost",
            "cups_port": 631,
            "cups_user": "admin",
            "cups_page_log": "/var/log/cups/page_log",

            # Local spooler tools
            "sumatra_path": "SumatraPDF.exe",
            "powershell_path": "powershell",

            # Document conversion
            "soffice_path": "soffice",
            "conversion_timeout": 120,

            # Storage
            "upload_base_path": str(self.config_dir / "uploads"),
            "database_path": str(self.config_dir / "data" / "printdale.db"),
            "temp_directory": str(self.config_dir / "temp"),

            # Status polling
            "poll_interval": 2.0,
            "max_poll_duration": 3600,
            "command_timeout": 30,

            # Startup health check
            "startup_retries": 3,
            "startup_backoff": 5.0,

            # Local API server
            "local_api_host": "127.0.0.1",
            "local_api_port": 8081,
            "enable_cors": True,

            # Logging
            "log_level": "INFO",
            "log_directory": str(self.config_dir / "logs"),
        }

    def _save_config(self):
        """Save configuration to file"""
        try:
            # Create backup if config exists
            if self.config_path.exists():
                backup_path = self.config_path.with_suffix('.json.backup')
                self.config_path.replace(backup_path)

            # Save new configuration
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)

            self.logger.debug("Configuration saved successfully")

        except OSError as e:
            self.logger.error(f"Failed to save configuration: {e}")

    def _apply_environment(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay environment variables on top of file values"""
        merged = dict(config)
        for env_name, (key, parser) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None or raw.strip() == "":
                continue
            try:
                merged[key] = parser(raw)
                self.logger.debug(f"Config key {key} overridden by {env_name}")
            except ValueError as e:
                self.logger.warning(f"Ignoring invalid {env_name}={raw!r}: {e}")
        return merged

    def get_service_config(self) -> ServiceConfig:
        """Build the immutable configuration used by the running service"""
        config = self._apply_environment(self.config)

        backend = str(config["backend"]).lower()
        if backend not in BACKENDS:
            raise ValueError(f"Unknown backend '{backend}', expected one of {', '.join(BACKENDS)}")

        device_source = str(config["device_source"]).lower()
        if device_source not in DEVICE_SOURCES:
            raise ValueError(f"Unknown device_source '{device_source}', expected one of {', '.join(DEVICE_SOURCES)}")

        printers: List[str] = [str(p).strip().lower() for p in config.get("printers") or [] if str(p).strip()]
        if not printers:
            printers = [DEFAULT_PRINTER]

        known = set(ServiceConfig.__dataclass_fields__) - {"extra"}
        extra = {key: value for key, value in config.items() if key not in known}

        return ServiceConfig(
            backend=backend,
            printers=tuple(printers),
            device_source=device_source,
            cups_server=config["cups_server"],
            cups_port=int(config["cups_port"]),
            cups_user=config["cups_user"],
            cups_page_log=config["cups_page_log"],
            sumatra_path=config["sumatra_path"],
            powershell_path=config["powershell_path"],
            soffice_path=config["soffice_path"],
            upload_base_path=config["upload_base_path"],
            database_path=config["database_path"],
            temp_directory=config.get("temp_directory"),
            poll_interval=float(config["poll_interval"]),
            max_poll_duration=float(config["max_poll_duration"]),
            command_timeout=float(config["command_timeout"]),
            conversion_timeout=float(config["conversion_timeout"]),
            startup_retries=int(config["startup_retries"]),
            startup_backoff=float(config["startup_backoff"]),
            local_api_host=config["local_api_host"],
            local_api_port=int(config["local_api_port"]),
            enable_cors=bool(config["enable_cors"]),
            log_level=str(config["log_level"]).upper(),
            log_directory=config["log_directory"],
            extra=extra,
        )
