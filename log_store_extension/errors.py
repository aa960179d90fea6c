"""Error taxonomy: fatal pre-flight errors carry the process exit code."""


class ExtensionError(Exception):
    """Base class for all extension errors."""

    exit_code = 1


class ConfigError(ExtensionError):
    exit_code = 1


class RegistrationError(ExtensionError):
    exit_code = 2


class SubscriptionError(ExtensionError):
    exit_code = 3


class LifecycleError(ExtensionError):
    """The platform's "next" endpoint could not be reached or answered badly."""

    exit_code = 4


class ReceiveError(ExtensionError):
    """A pushed log batch could not be parsed. Rejected, listener keeps running."""


class DeliveryError(ExtensionError):
    """A single send attempt to the log-store failed."""


class DrainTimeoutError(ExtensionError):
    """The shutdown deadline passed while batches were still queued."""
