"""Consumer no-show penalties and temporary reservation blocks."""

from .service import PenaltyService, PenaltyState

__all__ = ["PenaltyService", "PenaltyState"]
