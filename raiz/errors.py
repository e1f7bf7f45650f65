from enum import Enum


class RaizError(Exception):
    """Root of every error raised by raiz."""


class ConfigurationError(RaizError):
    """Invalid mode, malformed path or unusable settings."""


class ResolutionErrorKind(str, Enum):
    NO_RESOLVER_AVAILABLE = "NoResolverAvailable"
    SANDBOX_TIMEOUT = "SandboxTimeout"
    EXECUTION_FAILED = "ExecutionFailed"
    PARSE_FAILED = "ParseFailed"


class ResolutionError(RaizError):
    def __init__(self, kind: ResolutionErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(f"{kind.value}: {message}" if message else kind.value)


class SandboxError(RaizError):
    """External command could not be run to completion."""


class SandboxTimeout(SandboxError):
    def __init__(self, argv: list[str], timeout: float) -> None:
        self.argv = argv
        self.timeout = timeout
        super().__init__(f"'{argv[0]}' exceeded {timeout}s and was killed")


class SandboxLaunchError(SandboxError):
    pass


class ProviderError(RaizError):
    """Local failure of one vulnerability source (network, parse, rate limit)."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class SuppressionError(RaizError):
    """Rejected suppression state transition or unreadable suppression log."""
