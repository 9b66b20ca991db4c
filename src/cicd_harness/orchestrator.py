# Este archivo compone el escenario de prueba completo: esperar el puerto,
# lanzar el servidor con reintentos, ejecutar la aserción de salud y apagar
# siempre el proceso liberando el puerto.

"""
Test orchestrator.

Stages: idle -> port_wait -> launching -> probing -> running -> terminating
-> port_wait_post -> done. Terminating and port_wait_post always run, even
when an earlier stage failed or the run was interrupted by a signal.
"""
import asyncio  # Esperas y cancelación de tareas
import signal  # Señales del host
import time  # Medición de duración de cada etapa
from datetime import datetime, timezone  # Timestamps del reporte
from typing import Dict, List, Optional  # Type hints

from .config.settings import Settings, get_settings  # Configuración
from .exceptions import (  # Excepciones personalizadas
    LAUNCH_ERRORS,
    HarnessError,
    PortStillBound,
    RunInterrupted,
    ShutdownTimeout,
    StartupTimeout,
)
from .models.outcomes import (  # Modelos del reporte
    RunReport,
    ServerEndpoint,
    Stage,
    StageResult,
    StartOutcome,
    StepStatus,
    StopOutcome,
)
from .utils.health_utils import check_health  # Aserción de salud
from .utils.launcher import Prober, launch  # Lanzador del proceso
from .utils.logging import bind_run_context, clear_run_context, get_logger  # Logger estructurado
from .utils.port_utils import wait_for_port_free  # Espera de puerto libre
from .utils.process_utils import ChildProcessHandle  # Handle del proceso hijo
from .utils.signals import install_signal_handlers  # Manejadores de señales
from .utils.terminator import terminate  # Apagado del proceso

logger = get_logger(__name__)


class Orchestrator:
    """Runs one launch / assert / teardown scenario against one server."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        command: Optional[List[str]] = None,
        endpoint: Optional[ServerEndpoint] = None,
        env: Optional[Dict[str, str]] = None,
        prober: Optional[Prober] = None,
        handle_signals: bool = False
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Harness settings (defaults to the singleton)
            command: Argv to start the server (defaults to settings.command())
            endpoint: Server endpoint (defaults to settings.endpoint())
            env: Extra environment for the server process
            prober: Replacement for the HTTP health probe used while launching
            handle_signals: Route SIGINT/SIGTERM to shutdown() during run()
        """
        self.settings = settings or get_settings()
        self.command = command or self.settings.command()
        self.endpoint = endpoint or self.settings.endpoint()
        # HARNESS_PORT outranks PORT in the bundled server's settings
        self.env = {
            "PORT": str(self.endpoint.port),
            "HARNESS_PORT": str(self.endpoint.port),
            "HARNESS_HOST": self.endpoint.host,
            "PYTHONUNBUFFERED": "1",
            **(env or {})
        }
        self.prober = prober
        self.handle_signals = handle_signals
        self.stage = Stage.IDLE
        self.report = RunReport()
        self._handle: Optional[ChildProcessHandle] = None
        self._scenario: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._interrupted: Optional[signal.Signals] = None

    @property
    def active_handle(self) -> Optional[ChildProcessHandle]:
        return self._handle

    def _enter(self, stage: Stage) -> None:
        self.stage = stage
        logger.info("stage_entered", stage=stage.value)

    def _record(self, stage: Stage, started: float, error: Optional[Exception] = None) -> None:
        self.report.stages.append(StageResult(
            name=stage.value,
            status=StepStatus.FAILED if error else StepStatus.SUCCESS,
            duration_seconds=round(time.monotonic() - started, 3),
            error=str(error) if error else None
        ))
        if error is not None:
            self.report.record_failure(stage, error)
            logger.error(
                "stage_failed",
                stage=stage.value,
                error_kind=getattr(error, "kind", type(error).__name__),
                error=str(error),
                context=getattr(error, "context", {})
            )

    async def run(self) -> RunReport:
        """
        Execute the scenario and return its report.

        The report's exit_code is 0 only if the server launched and the
        health assertion passed and teardown completed.
        """
        bind_run_context(port=self.endpoint.port)
        logger.info("run_started", command=self.command, endpoint=self.endpoint.base_url)

        if self.handle_signals:
            install_signal_handlers(self._on_signal)

        self._scenario = asyncio.create_task(self._run_scenario())
        try:
            await self._scenario
        except asyncio.CancelledError:
            if self._interrupted is None:
                raise
            self._record(
                self.stage,
                time.monotonic(),
                RunInterrupted(
                    f"Interrupted by {self._interrupted.name}",
                    context={"signal": self._interrupted.name}
                )
            )
        finally:
            await self._collect_shutdown()
            await self._teardown()
            await self._collect_shutdown()

        self.report.success = self.report.failed_stage is None
        self.report.exit_code = 0 if self.report.success else 1
        self.report.completed_at = datetime.now(timezone.utc)
        self._enter(Stage.DONE)

        if self.report.success:
            logger.info("run_succeeded", attempts=self.report.attempts)
        else:
            logger.error(
                "run_failed",
                failed_stage=self.report.failed_stage.value,
                error_kind=self.report.error_kind,
                error=self.report.error
            )
        clear_run_context()
        return self.report

    async def _run_scenario(self) -> None:
        settings = self.settings

        self._enter(Stage.PORT_WAIT)
        started = time.monotonic()
        try:
            await wait_for_port_free(
                self.endpoint.port,
                host=self.endpoint.host,
                timeout=settings.port_wait_timeout,
                interval=settings.port_poll_interval
            )
        except PortStillBound as e:
            self._record(Stage.PORT_WAIT, started, e)
            return
        self._record(Stage.PORT_WAIT, started)

        if not await self._launch_with_retries():
            return

        self._enter(Stage.RUNNING)
        started = time.monotonic()
        try:
            self.report.healthcheck = await check_health(
                self.endpoint,
                timeout=settings.assertion_timeout,
                expected_status=settings.expected_status
            )
        except HarnessError as e:
            self._record(Stage.RUNNING, started, e)
            return
        self._record(Stage.RUNNING, started)
        logger.info("assertion_passed", url=self.endpoint.health_url)

    async def _launch_with_retries(self) -> bool:
        settings = self.settings
        outcome: Optional[StartOutcome] = None

        for attempt in range(1, settings.max_attempts + 1):
            self.report.attempts = attempt
            self._enter(Stage.LAUNCHING)
            logger.info("launch_attempt", attempt=attempt, max_attempts=settings.max_attempts)

            outcome, _ = await launch(
                self.command,
                self.endpoint,
                readiness_marker=settings.readiness_marker,
                timeout=settings.startup_timeout,
                poll_interval=settings.probe_interval,
                probe_timeout=settings.probe_timeout,
                expected_status=settings.expected_status,
                env=self.env,
                on_spawn=self._adopt,
                on_marker=lambda: self._enter(Stage.PROBING),
                prober=self.prober
            )

            self.report.stages.append(StageResult(
                name=f"{Stage.LAUNCHING.value}#{attempt}",
                status=StepStatus.SUCCESS if outcome.ready else StepStatus.FAILED,
                duration_seconds=outcome.elapsed_seconds,
                error=outcome.error
            ))
            if outcome.ready:
                return True

            logger.warning(
                "launch_attempt_failed",
                attempt=attempt,
                reason=outcome.reason.value,
                error=outcome.error
            )

            # The previous process must be gone and its port free before a retry
            cleanup_started = time.monotonic()
            try:
                await self._stop_active()
                if attempt < settings.max_attempts:
                    await wait_for_port_free(
                        self.endpoint.port,
                        host=self.endpoint.host,
                        timeout=settings.port_wait_timeout,
                        interval=settings.port_poll_interval
                    )
            except HarnessError as e:
                self._record(Stage.TERMINATING, cleanup_started, e)
                return False

            if attempt < settings.max_attempts:
                await asyncio.sleep(settings.retry_delay)

        error_type = LAUNCH_ERRORS.get(outcome.reason.value, StartupTimeout)
        error = error_type(
            f"Server failed to start after {settings.max_attempts} attempt(s): {outcome.error}",
            context={"attempts": settings.max_attempts, "exit_code": outcome.exit_code}
        )
        self.report.record_failure(Stage.LAUNCHING, error)
        logger.error("launch_exhausted", attempts=settings.max_attempts, error_kind=error.kind)
        return False

    def _adopt(self, handle: ChildProcessHandle) -> None:
        self._handle = handle

    async def _stop_active(self) -> StopOutcome:
        """Terminate the active handle; raises ShutdownTimeout if it survives."""
        handle = self._handle
        outcome = await terminate(
            handle,
            grace_period=self.settings.grace_period,
            stop_timeout=self.settings.stop_timeout
        )
        if not outcome.stopped:
            raise ShutdownTimeout(
                f"Server process {handle.pid} did not exit within {self.settings.stop_timeout}s",
                context={"pid": handle.pid, "forced": outcome.forced}
            )
        if self._handle is handle:
            self._handle = None
        return outcome

    async def _teardown(self) -> None:
        self._enter(Stage.TERMINATING)
        started = time.monotonic()
        try:
            await self._stop_active()
        except ShutdownTimeout as e:
            self._record(Stage.TERMINATING, started, e)
            # Port cannot be released while the process lives
            self.report.stages.append(StageResult(
                name=Stage.PORT_WAIT_POST.value,
                status=StepStatus.SKIPPED,
                duration_seconds=0.0
            ))
            return
        self._record(Stage.TERMINATING, started)

        self._enter(Stage.PORT_WAIT_POST)
        started = time.monotonic()
        try:
            await wait_for_port_free(
                self.endpoint.port,
                host=self.endpoint.host,
                timeout=self.settings.port_wait_timeout,
                interval=self.settings.port_poll_interval
            )
        except PortStillBound as e:
            self._record(Stage.PORT_WAIT_POST, started, e)
            return
        self._record(Stage.PORT_WAIT_POST, started)

    def _on_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_task is not None and not self._shutdown_task.done():
            logger.info("shutdown_already_running", signal=sig.name)
            return
        self._shutdown_task = asyncio.get_running_loop().create_task(self.shutdown(sig))

    async def _collect_shutdown(self) -> None:
        """Await a signal-triggered shutdown so its failures are logged."""
        task, self._shutdown_task = self._shutdown_task, None
        if task is None:
            return
        results = await asyncio.gather(task, return_exceptions=True)
        if isinstance(results[0], BaseException):
            logger.error("shutdown_failed", error=str(results[0]), error_kind=type(results[0]).__name__)

    async def shutdown(self, sig: Optional[signal.Signals] = None) -> StopOutcome:
        """
        Interrupt the running scenario and stop the server.

        Uses the same idempotent terminator as the normal teardown, so the
        teardown that follows finds the process already stopped.
        """
        self._interrupted = sig or signal.SIGTERM
        logger.warning("shutdown_requested", signal=self._interrupted.name, stage=self.stage.value)

        if self._scenario is not None and not self._scenario.done():
            self._scenario.cancel()

        return await terminate(
            self._handle,
            grace_period=self.settings.grace_period,
            stop_timeout=self.settings.stop_timeout
        )


async def run_scenario(settings: Optional[Settings] = None, **kwargs) -> RunReport:
    """Convenience wrapper: build an Orchestrator and run it once."""
    return await Orchestrator(settings=settings, **kwargs).run()
