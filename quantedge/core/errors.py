"""
Error Taxonomy for QuantEdge.

Every failure the engine can raise derives from ``QuantEdgeError``. The
classes map onto how the caller is expected to react:

    - ValidationError: malformed input, rejected at the boundary
    - BetRejected (and subclasses): a signal did not become a bet,
      portfolio state is unchanged
    - FeatureMissing: a model could not run on the given features; the
      ensemble substitutes defaults and carries on
    - TransientCollaboratorError: a persistence or feed call failed and
      may be retried
    - ConfigurationError: invalid settings at startup (fatal)
"""

from typing import Iterable, Optional


class QuantEdgeError(Exception):
    """Base class for all QuantEdge errors."""


class ValidationError(QuantEdgeError, ValueError):
    """Input violates a domain constraint (probability, stake, odds)."""


class ConfigurationError(QuantEdgeError):
    """Invalid configuration detected at process start."""


# ============================================================================
# Bet Rejections
# ============================================================================

class BetRejected(QuantEdgeError):
    """
    A trading signal was not converted into a bet.

    Attributes:
        match_id: Match the signal referred to
        strategy: Strategy tag of the signal
    """

    reason = "rejected"

    def __init__(self, message: str, match_id: str = "", strategy: str = ""):
        super().__init__(message)
        self.match_id = match_id
        self.strategy = strategy


class InsufficientBankroll(BetRejected):
    """Available bankroll cannot cover the stake."""

    reason = "insufficient_bankroll"


class DuplicateOpenBet(BetRejected):
    """An open bet already exists for the same match and strategy."""

    reason = "duplicate_open_bet"


class ExposureLimitReached(BetRejected):
    """The aggregate exposure cap leaves no room for a new stake."""

    reason = "exposure_limit"


class StakeTooSmall(BetRejected):
    """Stake is zero or negative after Kelly sizing and clamping."""

    reason = "stake_too_small"


# ============================================================================
# Settlement
# ============================================================================

class InvalidBetTransition(QuantEdgeError):
    """Attempted to move a bet out of a terminal state."""


class BetNotFound(QuantEdgeError, KeyError):
    """No bet with the given id is known to the portfolio."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "bet not found"


# ============================================================================
# Inference
# ============================================================================

class FeatureMissing(QuantEdgeError):
    """
    A model was asked to predict without one or more required features.

    Attributes:
        model_name: Name of the model that raised
        missing: Names of the absent features
    """

    def __init__(self, model_name: str, missing: Iterable[str]):
        self.model_name = model_name
        self.missing = tuple(sorted(missing))
        super().__init__(
            f"{model_name}: missing features {', '.join(self.missing)}"
        )


# ============================================================================
# Collaborators
# ============================================================================

class TransientCollaboratorError(QuantEdgeError):
    """
    A call into persistence or a data feed failed or timed out.

    Attributes:
        operation: Name of the collaborator operation
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")
