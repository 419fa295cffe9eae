"""Exception hierarchy for the decision platform."""


class DecisionPlatformError(Exception):
    """Base class for platform errors."""

    pass


class ConfigError(DecisionPlatformError):
    """Raised when the rule configuration cannot be read, parsed or validated."""

    pass


class ConditionError(ConfigError):
    """Raised when a condition document cannot be turned into a condition tree."""

    pass


class ArbiterLoadError(DecisionPlatformError):
    """Raised when the configured arbiter factory cannot be imported or built."""

    pass
