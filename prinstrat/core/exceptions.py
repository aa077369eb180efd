"""
Exception Classes

Exception hierarchy for PRINSTRAT. Every error raised on purpose by the
package derives from PrinstratError, so callers can catch them all at once:

    try:
        results = PrincipalStratumAnalysis(config).run()
    except PrinstratError as e:
        print(f"analysis failed: {e}")

Out-of-range configuration values are rejected earlier by pydantic
(pydantic.ValidationError) when the config objects are built.
"""

from typing import Optional


class PrinstratError(Exception):
    """Base class for all PRINSTRAT errors"""
    pass


class InvalidConfigurationError(PrinstratError):
    """
    Raised when a configuration passes field validation but cannot be run,
    e.g. a censoring probability of 1 that leaves no events to analyse.
    """
    pass


class CoxFitError(PrinstratError):
    """
    Raised when a proportional-hazards fit cannot produce usable estimates.

    Triggers include non-convergence of the Newton-Raphson iterations,
    convergence warnings from lifelines (complete separation, singular
    information matrix) and non-finite coefficients or variances.

    Attributes:
        reason: Short machine-readable failure category
        label: Optional description of the subset being fitted
    """

    def __init__(self, message: str, reason: str = "non_convergence", label: Optional[str] = None):
        self.reason = reason
        self.label = label
        if label:
            message = f"[{label}] {message}"
        super().__init__(message)


class EmptyStratumError(CoxFitError):
    """Raised when the subset to be fitted has no rows or no events"""

    def __init__(self, message: str, label: Optional[str] = None):
        super().__init__(message, reason="empty_stratum", label=label)


class PropensityModelError(PrinstratError):
    """
    Raised when the ADA model cannot be fitted on the treated arm,
    e.g. when every treated subject has the same observed S1.
    """
    pass


class ImputationFailureError(PrinstratError):
    """
    Raised when too many Monte Carlo draws fail.

    Failed draws are skipped and recorded; this error fires only when the
    failed fraction exceeds the configured maximum or no draw succeeded.

    Attributes:
        n_failed: Number of failed draws
        n_total: Number of attempted draws
    """

    def __init__(self, message: str, n_failed: int, n_total: int):
        self.n_failed = n_failed
        self.n_total = n_total
        super().__init__(message)
