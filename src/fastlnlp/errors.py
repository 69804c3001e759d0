# fastlnlp/errors.py


class ConfigurationError(ValueError):
    """Invalid option: non-positive E or tau, unknown norm, malformed range, ..."""


class InfeasibleParameterError(RuntimeError):
    """A parameter set leaves no query, no admissible neighbor, or no prediction."""


class ParameterSkippedWarning(UserWarning):
    """A parameter set was skipped by the runner; the others still run."""


class UndefinedStatisticWarning(RuntimeWarning):
    pass
