from typing import Optional


class MosquittoError(Exception):
    """
    Base class for every failure raised by the broker controller.
    """
    def __init__(self, message: str, program: Optional[str] = None):
        self.message = message
        self.program = program
        super().__init__(message)


class MosquittoUsageError(MosquittoError):
    """
    Raised when the controller is driven out of order (double start,
    stop without start). Never transient, never worth a retry.
    """


class MosquittoConfigError(MosquittoUsageError):
    """
    Raised when a configuration value cannot be resolved or rendered.
    """
    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        ctx = f" (field '{field}')" if field else ""
        super().__init__(f"{message}{ctx}")


class MosquittoEnvironmentError(MosquittoError):
    """
    Raised when a required program is missing from the execution path.
    """
    def __init__(self, program: str):
        super().__init__(f'program "{program}" not found', program=program)


class MosquittoProvisioningError(MosquittoError):
    """
    Raised when an artifact (credentials, certificate) cannot be produced.
    """


class MosquittoTimeoutError(MosquittoError):
    """
    Raised when the broker does not announce readiness in time.
    """
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"timeout starting Mosquitto (no startup banner after {timeout_seconds:.3f}s)")


class MosquittoTeardownError(MosquittoError):
    """
    Raised by stop() when a resource could not be released. The controller
    state has already been reset when this is raised.
    """
