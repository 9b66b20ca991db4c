"""
Pydantic models for harness runs.

Defines the endpoint value, launch/stop outcomes and the run report.
"""
from datetime import datetime, timezone  # Manejo de fechas y timestamps
from enum import Enum  # Crear enumeraciones con valores fijos
from typing import Optional, List  # Type hints para tipos opcionales y listas

from pydantic import BaseModel, ConfigDict, Field  # BaseModel: clase base para modelos, Field: validación de campos


class Stage(str, Enum):
    """Orchestrator stages (finite state machine)."""
    IDLE = "idle"
    PORT_WAIT = "port_wait"
    LAUNCHING = "launching"
    PROBING = "probing"
    RUNNING = "running"
    TERMINATING = "terminating"
    PORT_WAIT_POST = "port_wait_post"
    DONE = "done"


class StepStatus(str, Enum):
    """Valid step execution status values."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class StartStatus(str, Enum):
    READY = "ready"
    FAILED = "failed"


class StartFailure(str, Enum):
    """Why a launch attempt failed; values match the exception names."""
    TIMEOUT = "StartupTimeout"
    SPAWN_ERROR = "SpawnError"
    EARLY_EXIT = "EarlyExit"


class StopStatus(str, Enum):
    STOPPED = "stopped"
    FAILED_TO_STOP = "failed-to-stop"


class ServerEndpoint(BaseModel):
    """Where the target server listens. Immutable for one run."""

    model_config = ConfigDict(frozen=True)

    host: str = Field("127.0.0.1", description="Host name or address")
    port: int = Field(..., ge=1, le=65535, description="TCP port")
    health_path: str = Field("/health", description="Path of the health endpoint")
    scheme: str = Field("http", description="URL scheme")

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}"

    @property
    def health_url(self) -> str:
        return f"{self.base_url}{self.health_path}"


class StartOutcome(BaseModel):
    """Result of one launch attempt."""
    status: StartStatus = Field(..., description="ready or failed")
    elapsed_seconds: float = Field(..., description="Time from spawn to settlement")
    reason: Optional[StartFailure] = Field(None, description="Failure kind if failed")
    exit_code: Optional[int] = Field(None, description="Exit code for early exits")
    error: Optional[str] = Field(None, description="Human-readable failure detail")
    pid: Optional[int] = Field(None, description="Process id if the spawn succeeded")

    @property
    def ready(self) -> bool:
        return self.status == StartStatus.READY


class StopOutcome(BaseModel):
    """Result of terminating the server process."""
    status: StopStatus = Field(..., description="stopped or failed-to-stop")
    elapsed_seconds: float = Field(0.0, description="Time spent terminating")
    forced: bool = Field(False, description="True if the kill signal was needed")
    exit_code: Optional[int] = Field(None, description="Exit code once confirmed")

    @property
    def stopped(self) -> bool:
        return self.status == StopStatus.STOPPED


class HealthCheckResult(BaseModel):
    """Health check validation result."""
    status: str = Field(..., description="healthy or unhealthy")
    url: str = Field(..., description="URL that was checked")
    response_code: Optional[int] = Field(None, description="HTTP response code if a response arrived")
    body: Optional[dict] = Field(None, description="Decoded JSON body")
    error: Optional[str] = Field(None, description="Error message if unhealthy")


class StageResult(BaseModel):
    """Individual stage of a harness run (or step of a pipeline)."""
    name: str = Field(..., description="Stage or step name")
    status: StepStatus = Field(..., description="Execution status")
    duration_seconds: float = Field(..., description="Execution time in seconds")
    error: Optional[str] = Field(None, description="Error message if failed")


class RunReport(BaseModel):
    """Complete record of one orchestrated run."""

    success: bool = Field(False, description="True if the run passed")
    exit_code: int = Field(1, description="Process exit status for the run")
    attempts: int = Field(0, description="Launch attempts made")
    failed_stage: Optional[Stage] = Field(None, description="First stage that failed")
    error_kind: Optional[str] = Field(None, description="Exception name of the first failure")
    error: Optional[str] = Field(None, description="First failure message")
    stages: List[StageResult] = Field(default_factory=list, description="Executed stages")
    healthcheck: Optional[HealthCheckResult] = Field(None, description="Assertion result")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Run start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Run completion timestamp")

    def record_failure(self, stage: Stage, error: Exception) -> None:
        """Keep the first failure; later ones only show up in stages."""
        if self.failed_stage is None:
            self.failed_stage = stage
            self.error_kind = getattr(error, "kind", type(error).__name__)
            self.error = str(error)
