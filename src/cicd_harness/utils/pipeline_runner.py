# Este archivo ejecuta un pipeline definido en YAML: cada paso es un comando
# de shell que se corre en orden, deteniéndose en el primer fallo.

"""
YAML pipeline runner.

A pipeline file looks like::

    steps:
      - name: Install
        command: pip install -e .
      - name: Test
        command: cicd-harness test
"""
import subprocess  # Ejecución de comandos de shell
import time  # Medición de duración de pasos
from pathlib import Path  # Manejo moderno de rutas de archivos
from typing import List, Optional  # Type hints

import yaml  # PyYAML para leer la definición del pipeline
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError  # Validación del esquema

from ..exceptions import PipelineError  # Excepción personalizada del pipeline
from ..models.outcomes import StageResult, StepStatus  # Resultado por paso
from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)


class PipelineStep(BaseModel):
    """One shell command in the pipeline."""
    name: str = Field(..., min_length=1, description="Human-readable step name")
    command: str = Field(..., min_length=1, description="Shell command to run")


class PipelineDefinition(BaseModel):
    """Parsed pipeline file."""
    steps: List[PipelineStep] = Field(..., description="Steps in execution order")


def load_pipeline(path: Path) -> PipelineDefinition:
    """
    Load and validate a pipeline YAML file.

    Raises:
        PipelineError: If the file is missing, is not valid YAML or does
            not match the expected schema
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise PipelineError(
            f"Cannot read pipeline file {path}: {e}",
            context={"path": str(path)}
        )
    except yaml.YAMLError as e:
        raise PipelineError(
            f"Invalid YAML in {path}: {e}",
            context={"path": str(path)}
        )

    if not isinstance(raw, dict):
        raise PipelineError(
            f"Pipeline file {path} must contain a mapping with 'steps'",
            context={"path": str(path)}
        )

    try:
        return PipelineDefinition(**raw)
    except PydanticValidationError as e:
        raise PipelineError(
            f"Invalid pipeline definition in {path}: {e.error_count()} error(s)",
            context={"path": str(path), "errors": e.errors()}
        )


def run_pipeline(
    pipeline: PipelineDefinition,
    cwd: Optional[Path] = None,
    capture_output: bool = False
) -> List[StageResult]:
    """
    Run every step through the shell, in order.

    Args:
        pipeline: Validated pipeline definition
        cwd: Working directory for the commands
        capture_output: Capture stdout/stderr instead of inheriting them

    Returns:
        One StageResult per executed step

    Raises:
        PipelineError: On the first step exiting non-zero; ``context``
            carries the results so far
    """
    results: List[StageResult] = []

    for step in pipeline.steps:
        logger.info("pipeline_step_started", step=step.name, command=step.command)
        start_time = time.monotonic()

        completed = subprocess.run(
            step.command,
            shell=True,
            cwd=str(cwd) if cwd else None,
            capture_output=capture_output,
            text=True
        )
        duration = round(time.monotonic() - start_time, 3)

        if completed.returncode != 0:
            error = f"Step '{step.name}' exited with code {completed.returncode}"
            results.append(StageResult(
                name=step.name,
                status=StepStatus.FAILED,
                duration_seconds=duration,
                error=error
            ))
            logger.error("pipeline_step_failed", step=step.name, exit_code=completed.returncode)
            raise PipelineError(
                error,
                context={
                    "step": step.name,
                    "exit_code": completed.returncode,
                    "results": [r.model_dump(mode="json") for r in results],
                    "stderr": (completed.stderr or "")[-2000:] if capture_output else None
                }
            )

        results.append(StageResult(name=step.name, status=StepStatus.SUCCESS, duration_seconds=duration))
        logger.info("pipeline_step_completed", step=step.name, duration=duration)

    logger.info("pipeline_completed", steps=len(results))
    return results


def run_pipeline_file(path: Path, cwd: Optional[Path] = None, capture_output: bool = False) -> List[StageResult]:
    """Load ``path`` and run it (commands run in the current directory by default)."""
    pipeline = load_pipeline(path)
    return run_pipeline(pipeline, cwd=cwd, capture_output=capture_output)
