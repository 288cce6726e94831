"""Supervisor configuration."""

import platform
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from supervisor.health import FixedDelayProbe, HttpHealthProbe
from supervisor.launcher import search_path_overlay
from supervisor.models import LaunchSpec, RuntimeDependencySet, SupervisionPolicy
from supervisor.output_logger import OutputLogger

# ffmpeg runtime shipped alongside the application
DEFAULT_REQUIRED_LIBRARIES = [
    "ffmpeg.dll",
    "avcodec-61.dll",
    "avdevice-61.dll",
    "avfilter-10.dll",
    "avformat-61.dll",
    "avutil-59.dll",
    "postproc-58.dll",
    "swresample-5.dll",
    "swscale-8.dll",
]


class Settings(BaseSettings):
    """Supervisor settings loaded from ASSISTANT_* environment variables."""

    # Layout (all relative to app_root)
    app_root: Path = Field(default_factory=Path.cwd)
    service_data_dirname: str = "service_data"
    data_dirname: str = "data"
    app_executable: str = "project-assistant.exe"
    jar_name: str = "project-assistant-service-1.0.0.jar"
    config_name: str = "application.yml"

    # Backend
    backend_host: str = "localhost"
    backend_port: int = 8080
    api_path: str = "/api/"
    heap_min: str = "256m"
    heap_max: str = "512m"

    # Runtime libraries the backend loads from its working directory
    required_libraries: list[str] = DEFAULT_REQUIRED_LIBRARIES

    # Run logs, written to app_root
    log_file: str = "debug.log"
    launcher_log_file: str = "startup.log"

    # Readiness: "delay" is a blind warm-up wait, "health" polls the API
    readiness_mode: Literal["delay", "health"] = "health"
    warm_up_seconds: float = 3.0
    health_timeout: float = 60.0
    health_interval: float = 1.0
    health_request_timeout: float = 5.0

    # Shutdown; a shutdown_timeout of 0 sends the termination request and moves on
    shutdown_timeout: float = 5.0
    flush_timeout: float = 1.0
    detached_linger_seconds: float = 3.0

    # Console
    log_level: str = "info"
    open_browser: bool = True

    @model_validator(mode="after")
    def _validate_ranges(self) -> "Settings":
        if not 0 < self.backend_port < 65536:
            raise ValueError(f"backend_port must be between 1 and 65535, got {self.backend_port}")
        for name in ("warm_up_seconds", "shutdown_timeout", "flush_timeout", "detached_linger_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.health_interval <= 0 or self.health_timeout <= 0:
            raise ValueError("health_interval and health_timeout must be positive")
        if self.health_interval > self.health_timeout:
            raise ValueError("health_interval must not exceed health_timeout")
        return self

    class Config:
        env_prefix = "ASSISTANT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    @property
    def service_data_dir(self) -> Path:
        return self.app_root / self.service_data_dirname

    @property
    def jre_dir(self) -> Path:
        return self.service_data_dir / "jre"

    @property
    def java_executable(self) -> Path:
        name = "java.exe" if platform.system() == "Windows" else "java"
        return self.jre_dir / "bin" / name

    @property
    def service_dir(self) -> Path:
        return self.service_data_dir / "service"

    @property
    def jar_file(self) -> Path:
        return self.service_dir / self.jar_name

    @property
    def config_file(self) -> Path:
        return self.service_dir / "conf" / self.config_name

    @property
    def logs_dir(self) -> Path:
        return self.service_data_dir / "logs"

    @property
    def data_dir(self) -> Path:
        return self.app_root / self.data_dirname

    @property
    def database_path(self) -> Path:
        return self.data_dir / "projectdb"

    @property
    def app_executable_path(self) -> Path:
        return self.app_root / self.app_executable

    @property
    def log_path(self) -> Path:
        return self.app_root / self.log_file

    @property
    def launcher_log_path(self) -> Path:
        return self.app_root / self.launcher_log_file

    @property
    def api_url(self) -> str:
        return f"http://{self.backend_host}:{self.backend_port}{self.api_path}"

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def runtime_dependencies(self) -> RuntimeDependencySet:
        return RuntimeDependencySet(
            filenames=self.required_libraries,
            primary_dir=self.app_root,
            fallback_dirs=[self.service_data_dir],
        )

    def backend_args(self) -> list[str]:
        """JVM and Spring arguments; every value is fixed by convention."""
        return [
            f"-Xms{self.heap_min}",
            f"-Xmx{self.heap_max}",
            "-jar",
            str(self.jar_file),
            f"--spring.config.location=file:{self.config_file}",
            f"--spring.datasource.url=jdbc:h2:file:{self.database_path};AUTO_SERVER=TRUE",
            f"--app.data.dir={self.data_dir}",
            f"--logging.file.name={self.logs_dir / 'service.log'}",
            f"--server.port={self.backend_port}",
        ]

    def build_backend_spec(self) -> LaunchSpec:
        """Attached launch of the packaged JVM running the backend archive."""
        return LaunchSpec(
            executable=self.java_executable,
            args=self.backend_args(),
            cwd=self.app_root,
            env_overlay=search_path_overlay(self.app_root, self.service_data_dir),
            policy=SupervisionPolicy.ATTACHED,
            required_files=[self.jar_file, self.config_file],
        )

    def build_app_spec(self) -> LaunchSpec:
        """Detached launch of the packaged application executable."""
        return LaunchSpec(
            executable=self.app_executable_path,
            cwd=self.app_root,
            env_overlay=search_path_overlay(self.app_root, self.service_data_dir),
            policy=SupervisionPolicy.DETACHED,
        )

    def build_probe(self) -> FixedDelayProbe | HttpHealthProbe:
        if self.readiness_mode == "delay":
            return FixedDelayProbe(self.warm_up_seconds)
        return HttpHealthProbe(
            self.api_url,
            timeout=self.health_timeout,
            interval=self.health_interval,
            request_timeout=self.health_request_timeout,
        )

    def ensure_directories(self, log: OutputLogger) -> None:
        """Create service_data/, data/ and the backend log directory if missing."""
        for directory in (self.service_data_dir, self.data_dir, self.logs_dir):
            if directory.exists():
                continue
            try:
                directory.mkdir(parents=True, exist_ok=True)
                log.info(f"Created directory: {directory}")
            except OSError as e:
                log.error(f"Failed to create directory {directory}: {e}")
