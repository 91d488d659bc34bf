"""Business logic services."""

from commission_engine.services.attribution import AttributionRecorder
from commission_engine.services.disputes import DisputeManager
from commission_engine.services.engine import CommissionEngine
from commission_engine.services.ledger import Actor, ActorRole, CommissionLedger
from commission_engine.services.limits import LimitEnforcer
from commission_engine.services.payouts import PayoutBatchManager
from commission_engine.services.rates import RateResolver
from commission_engine.services.tiers import TierProgressionTracker

__all__ = [
    "Actor",
    "ActorRole",
    "AttributionRecorder",
    "CommissionEngine",
    "CommissionLedger",
    "DisputeManager",
    "LimitEnforcer",
    "PayoutBatchManager",
    "RateResolver",
    "TierProgressionTracker",
]
