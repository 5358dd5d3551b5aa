"""Custom exception hierarchy for hubitat_mqtt."""

from __future__ import annotations


class HubitatMqttError(Exception):
    """Base exception for all hubitat_mqtt errors."""


class ConfigError(HubitatMqttError):
    """Invalid or missing configuration."""


class TransportUnavailableError(HubitatMqttError):
    """The MQTT broker is not reachable (disconnected or refused the request)."""


class RemoteApiError(HubitatMqttError):
    """Hub Maker API failure (network, non-2xx status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class PublishExhaustedError(HubitatMqttError):
    """A publish kept failing with retryable errors until the attempt budget ran out.

    ``last_error`` carries the cause of the final attempt; the exception is
    also chained to it.
    """

    def __init__(
        self,
        topic: str,
        *,
        attempts: int,
        last_error: BaseException | None,
    ) -> None:
        self.topic = topic
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Publish to {topic} failed after {attempts} attempt(s): {last_error}")


class LockTimeoutError(HubitatMqttError):
    """A device or full-sync permit was not granted within its timeout."""

    def __init__(self, resource: str, *, timeout: float) -> None:
        self.resource = resource
        self.timeout = timeout
        super().__init__(f"Failed to acquire {resource} lock within {timeout}s")


class DeferredUpdateError(HubitatMqttError):
    """A device update was refused because a full sync is running.

    Not a failure as such: the device was recorded as pending and the
    full-sync engine reprocesses it once the sync completes.
    """

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"Full sync in progress, update for device {device_id} deferred")


class EventValidationError(HubitatMqttError):
    """Inbound webhook event is malformed (missing content, device id or name)."""
