"""
Global Exception Handling

Provides the pipeline's error taxonomy, structured error responses and the
circuit breaker used in front of external inference services.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from airchives.core.logging import get_logger, job_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class AirchivesError(Exception):
    """Base exception for the Airchives pipeline."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.job_id = job_id or job_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AirchivesError):
    """Raised when input validation fails."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class GarmentNotSegmentedError(ValidationError):
    """Raised when a generation is requested for a garment without a mask."""

    def __init__(self, garment_id: str, **kwargs):
        super().__init__(
            f"Garment '{garment_id}' has not been segmented; a mask is required for generation",
            **kwargs
        )
        self.details["garment_id"] = garment_id


class NotFoundError(AirchivesError):
    """Raised when a referenced record does not exist."""

    resource = "Resource"

    def __init__(self, resource_id: str, **kwargs):
        super().__init__(f"{self.resource} '{resource_id}' not found", code=404, **kwargs)
        self.details["resource"] = self.resource.lower()
        self.details["id"] = resource_id


class GarmentNotFoundError(NotFoundError):
    resource = "Garment"


class GenerationNotFoundError(NotFoundError):
    resource = "Generation"


class VirtualModelNotFoundError(NotFoundError):
    resource = "Virtual model"


class OutputImageNotFoundError(NotFoundError):
    resource = "Output image"


class InvalidStatusTransitionError(AirchivesError):
    """Raised when a record would leave a terminal state or move backwards."""

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(
            f"Cannot transition from {current} to {target}",
            code=409,
            **kwargs
        )
        self.details["current_status"] = current
        self.details["target_status"] = target


class ProviderConfigurationError(AirchivesError):
    """Raised when no inference provider credential is configured."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=503, **kwargs)


class PipelineStageError(AirchivesError):
    """Raised when a pipeline stage fails."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, code=500, stage=stage, **kwargs)


class ExternalAPIError(AirchivesError):
    """Raised when an external API call fails."""

    def __init__(self, message: str, service: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, code=502, **kwargs)
        self.service = service
        self.http_status = http_status
        self.details["service"] = service
        self.details["http_status"] = http_status


class ProviderError(ExternalAPIError):
    """Raised when an inference provider call fails or returns an unusable body."""


class ProviderTimeoutError(ProviderError):
    """Raised when a provider request exceeds its timeout."""


class ProviderJobFailedError(ProviderError):
    """Raised when a submitted provider job ends in a non-success terminal state."""

    def __init__(self, message: str, service: str, provider_status: str, **kwargs):
        super().__init__(message, service=service, **kwargs)
        self.details["provider_status"] = provider_status


class PollingTimeoutError(ProviderError):
    """Raised when a provider job is still running after the polling bound."""

    def __init__(self, message: str, service: str, attempts: int, waited_seconds: float, **kwargs):
        super().__init__(message, service=service, **kwargs)
        self.details["attempts"] = attempts
        self.details["waited_seconds"] = round(waited_seconds, 2)


class SegmentationError(ExternalAPIError):
    """Raised when segmentation cannot produce a mask."""

    def __init__(self, message: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, service="segmentation", http_status=http_status, stage="segmentation", **kwargs)


class ArtifactDownloadError(ExternalAPIError):
    """Raised when a generated image cannot be fetched from the provider."""

    def __init__(self, message: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, service="artifact_download", http_status=http_status, stage="publish", **kwargs)


class StorageError(AirchivesError):
    """Raised when storage operations fail."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class PersistenceError(AirchivesError):
    """Raised when a record cannot be written."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class CircuitBreakerOpenError(AirchivesError):
    """Raised when circuit breaker is open."""

    def __init__(self, service: str, **kwargs):
        super().__init__(
            f"Service '{service}' is temporarily unavailable (circuit breaker open)",
            code=503,
            **kwargs
        )
        self.details["service"] = service


# =============================================================================
# Circuit Breaker Implementation
# =============================================================================

class CircuitBreaker:
    """
    Circuit Breaker for external inference services.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests fail fast
    - HALF_OPEN: Testing if service is recovered
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 3
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self._failure_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._state = "CLOSED"
        self._half_open_calls = 0

    @property
    def state(self) -> str:
        """Get current circuit breaker state."""
        if self._state == "OPEN" and self._last_failure_time:
            elapsed = (datetime.utcnow() - self._last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                self._state = "HALF_OPEN"
                self._half_open_calls = 0
        return self._state

    def can_execute(self) -> bool:
        """Check if request can proceed."""
        state = self.state

        if state == "CLOSED":
            return True
        if state == "HALF_OPEN":
            return self._half_open_calls < self.half_open_max_calls
        return False

    def record_success(self):
        """Record a successful call."""
        if self._state == "HALF_OPEN":
            self._half_open_calls += 1
            if self._half_open_calls >= self.half_open_max_calls:
                self._state = "CLOSED"
                self._failure_count = 0
                logger.info("circuit_breaker_closed", circuit=self.name)
        elif self._state == "CLOSED":
            self._failure_count = 0

    def record_failure(self, error: Optional[Exception] = None):
        """Record a failed call."""
        self._failure_count += 1
        self._last_failure_time = datetime.utcnow()

        if self._state == "HALF_OPEN":
            self._state = "OPEN"
            logger.warning(
                "circuit_breaker_reopened",
                circuit=self.name,
                error=str(error) if error else None
            )
        elif self._state == "CLOSED" and self._failure_count >= self.failure_threshold:
            self._state = "OPEN"
            logger.warning(
                "circuit_breaker_opened",
                circuit=self.name,
                failure_count=self._failure_count,
                error=str(error) if error else None
            )

    def reset(self):
        """Reset the circuit breaker."""
        self._state = "CLOSED"
        self._failure_count = 0
        self._last_failure_time = None
        self._half_open_calls = 0


# Global circuit breakers for external services
circuit_breakers: Dict[str, CircuitBreaker] = {
    "fal": CircuitBreaker("fal", failure_threshold=5, recovery_timeout=120),
    "replicate": CircuitBreaker("replicate", failure_threshold=5, recovery_timeout=120),
}


def get_circuit_breaker(name: str) -> CircuitBreaker:
    """Get or create a circuit breaker for a service."""
    if name not in circuit_breakers:
        circuit_breakers[name] = CircuitBreaker(name)
    return circuit_breakers[name]


def reset_circuit_breakers():
    """Close every registered breaker."""
    for breaker in circuit_breakers.values():
        breaker.reset()


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(AirchivesError)
    async def airchives_exception_handler(request: Request, exc: AirchivesError):
        job_id = exc.job_id or job_id_var.get()

        log = logger.warning if exc.code < 500 else logger.error
        log(
            "airchives_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            stage=exc.stage,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(
            status_code=exc.code,
            content={
                "error": exc.message,
                "job_id": job_id,
                "code": exc.code,
                "stage": exc.stage,
                "details": exc.details,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        job_id = job_id_var.get()

        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "job_id": job_id,
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
