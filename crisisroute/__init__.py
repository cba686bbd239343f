"""crisisroute: External Crisis-Signal Routing Engine.

Routes a triggered child-safety "help" signal to an external crisis partner:
  - Partner selection by jurisdiction with national fallback
  - Minimal, de-identified payload with a forbidden-field exclusion check
  - Hybrid RSA-OAEP + AES-GCM encryption per partner key
  - Webhook delivery with timeouts, bounded retries and exponential backoff
  - Strict routing state machine (pending -> encrypting -> sending -> sent | failed)
  - 48-hour family-notification blackout after confirmed delivery
  - Hash-chained, admin-only audit ledger
"""

__version__ = "0.1.0"
__description__ = "External crisis-signal routing engine"

from crisisroute.callable import route
from crisisroute.core.orchestrator import RoutingOrchestrator

__all__ = ["RoutingOrchestrator", "route", "__version__"]
