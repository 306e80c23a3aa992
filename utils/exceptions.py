"""Exception types shared across the analysis pipeline.

Only domain errors on the base series are fatal for a report run. Fit failures are
recovered by the model search, and numerical instability is surfaced as a warning.
"""


class DomainError(ValueError):
    """Input lies outside the domain of a transform or the series is malformed."""
    pass


class FitConvergenceFailure(RuntimeError):
    """A SARIMA specification could not be fitted to a usable optimum."""

    def __init__(self, message: str, reason: str = "convergence") -> None:
        super().__init__(message)
        self.reason = reason


class NumericalInstability(RuntimeWarning):
    """Standard errors are undefined because the covariance at the optimum is ill-conditioned."""
    pass
