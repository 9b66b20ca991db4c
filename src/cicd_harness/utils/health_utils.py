# Este archivo implementa el sondeo de salud del servidor: una sonda booleana
# con timeout, la aserción sobre /health y el sondeo con backoff exponencial.

"""
Health probing utilities.

probe() answers up/down and never raises; check_health() is the assertion run
against a ready server; poll_health() retries with exponential backoff.
"""
import time  # Medición de tiempo con reloj monotónico
import asyncio  # Esperas no bloqueantes entre reintentos
from typing import Optional  # Type hints para valores opcionales

import httpx  # Cliente HTTP async para health checks

from ..exceptions import HealthCheckFailure  # Excepción personalizada para health checks
from ..models.outcomes import HealthCheckResult, ServerEndpoint  # Modelos de resultado
from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)

REQUIRED_HEALTH_FIELDS = ("status", "timestamp", "uptime", "environment")
MAX_POLL_INTERVAL = 10.0


async def probe(
    endpoint: ServerEndpoint,
    timeout: float = 1.0,
    expected_status: int = 200,
    client: Optional[httpx.AsyncClient] = None
) -> bool:
    """
    Send one GET to the health endpoint.

    Only an exact ``expected_status`` counts as healthy. Connection errors,
    timeouts and any other status map to False.

    Args:
        endpoint: Server endpoint to probe
        timeout: Hard timeout for the request in seconds
        expected_status: Status code treated as healthy
        client: Optional shared client (a fresh one is used otherwise)

    Returns:
        True if the endpoint answered with the expected status
    """
    url = endpoint.health_url

    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                response = await own_client.get(url, timeout=timeout)
        else:
            response = await client.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        logger.debug("health_probe_unreachable", url=url, error=str(e) or type(e).__name__)
        return False

    if response.status_code != expected_status:
        logger.debug(
            "health_probe_unexpected_status",
            url=url,
            status_code=response.status_code,
            expected=expected_status
        )
        return False

    return True


async def check_health(
    endpoint: ServerEndpoint,
    timeout: float = 5.0,
    expected_status: int = 200
) -> HealthCheckResult:
    """
    Assert the server answers its health endpoint correctly.

    The response must carry the expected status and a JSON object with at
    least ``status``, ``timestamp``, ``uptime`` and ``environment``.

    Raises:
        HealthCheckFailure: If the request fails or the response is unhealthy
    """
    url = endpoint.health_url

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        raise HealthCheckFailure(
            f"Health endpoint unreachable: {url}: {e or type(e).__name__}",
            context={"url": url, "error": str(e)}
        )

    logger.info(
        "health_response",
        method="GET",
        url=url,
        status_code=response.status_code
    )

    if response.status_code != expected_status:
        raise HealthCheckFailure(
            f"Unexpected status code from {url}: {response.status_code}",
            context={"url": url, "status_code": response.status_code, "expected": expected_status}
        )

    try:
        body = response.json()
    except ValueError:
        raise HealthCheckFailure(
            f"Health endpoint did not return JSON: {url}",
            context={"url": url, "status_code": response.status_code}
        )

    if not isinstance(body, dict):
        raise HealthCheckFailure(
            f"Health body is not a JSON object: {url}",
            context={"url": url}
        )

    missing = [field for field in REQUIRED_HEALTH_FIELDS if field not in body]
    if missing:
        raise HealthCheckFailure(
            f"Health body missing fields: {', '.join(missing)}",
            context={"url": url, "missing": missing}
        )

    return HealthCheckResult(
        status="healthy",
        url=url,
        response_code=response.status_code,
        body=body
    )


async def poll_health(
    url: str,
    timeout: float = 30.0,
    interval: float = 2.0,
    backoff: float = 1.5,
    expected_status: int = 200
) -> dict:
    """
    Poll a URL until it returns the expected status or the timeout expires.

    Retry strategy:
    - Initial interval: 2.0 seconds (configurable)
    - Backoff multiplier: 1.5 (configurable)
    - Max interval: 10 seconds

    Returns:
        Dictionary with healthy, url, response_code, attempts,
        elapsed_seconds and message

    Raises:
        HealthCheckFailure: If the service never became healthy
    """
    logger.info("healthcheck_started", url=url, timeout=timeout, expected_status=expected_status)

    start_time = time.monotonic()
    attempt = 0
    current_interval = interval
    last_error = None
    last_status_code = None

    async with httpx.AsyncClient() as client:
        while (time.monotonic() - start_time) < timeout:
            attempt += 1

            try:
                response = await client.get(url, timeout=5.0, follow_redirects=True)
                last_status_code = response.status_code

                if response.status_code == expected_status:
                    elapsed = round(time.monotonic() - start_time, 2)
                    logger.info("healthcheck_success", url=url, attempts=attempt, elapsed=elapsed)
                    return {
                        "healthy": True,
                        "url": url,
                        "response_code": response.status_code,
                        "attempts": attempt,
                        "elapsed_seconds": elapsed,
                        "message": f"Service healthy after {attempt} attempt(s) in {elapsed}s"
                    }

                last_error = f"Unexpected status code: {response.status_code}"

            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.debug("healthcheck_connection_failed", url=url, attempt=attempt, error=last_error)

            remaining = timeout - (time.monotonic() - start_time)
            if remaining <= 0:
                break
            await asyncio.sleep(min(current_interval, MAX_POLL_INTERVAL, remaining))
            current_interval *= backoff

    elapsed = round(time.monotonic() - start_time, 2)
    logger.error("healthcheck_timeout", url=url, attempts=attempt, elapsed=elapsed, last_error=last_error)

    raise HealthCheckFailure(
        f"Health check failed for {url}: {last_error or 'timeout'}",
        context={
            "url": url,
            "attempts": attempt,
            "elapsed": elapsed,
            "response_code": last_status_code,
            "last_error": last_error
        }
    )
