"""
Honeypot Classifier: flags trap identifiers and replayed dead sessions before a peer joins.
"""

import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from ..models.core import ClassificationResult, HoneypotAlert, TrapType
from ..utils.identifiers import (generate_honeytoken, has_honeytoken_prefix, is_valid_fingerprint, is_valid_session_id,
                                 redact_session_id)
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_iso_string
from .alerts import AlertDispatcher, session_channel
from .session_registry import SessionRegistry

logger = get_logger(__name__)

DEAD_SESSION_WARNING = 'Suspicious access attempt detected on your expired session'

# Daily batch: explicit traps plus decoys planted where leaked dead links would surface
ROTATION_BATCH = (('TRAP', 2), ('DECOY', 2))


class HoneypotClassifier:
    """Classify a requested identifier as explicit trap, dead session or clear.

    Order matters: the reserved-prefix test is pure string matching and
    short-circuits before any store lookup; the dead-session test reads the
    raw record because ``validate`` collapses Expired and Absent.
    """

    def __init__(self,
                 registry: SessionRegistry,
                 dispatcher: Optional[AlertDispatcher] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the honeypot classifier.

        Args:
            registry: SessionRegistry used read-only
            dispatcher: AlertDispatcher for dead-session alerts (alerts are skipped if None)
            clock: Source of Unix time in seconds
        """
        self.registry = registry
        self.dispatcher = dispatcher
        self.clock = clock
        logger.info('Initialized HoneypotClassifier')

    def classify(self, session_id: str, accessor_fingerprint: Optional[str] = None) -> ClassificationResult:
        """
        Vet an identifier before a peer is allowed to validate and join it.

        Args:
            session_id: Requested identifier
            accessor_fingerprint: Opaque fingerprint of the peer asking (optional)

        Returns:
            ClassificationResult; ``none`` covers fresh, unknown, live and malformed identifiers alike

        Raises:
            UnreachableError: If the store cannot be reached
            InternalFailureError: If the store read fails
        """
        if has_honeytoken_prefix(session_id):
            logger.warning(f'Trap activated - type: {TrapType.EXPLICIT_TRAP.value}, session: {redact_session_id(session_id)}')
            return ClassificationResult(is_trap=True, trap_type=TrapType.EXPLICIT_TRAP)

        if not is_valid_session_id(session_id):
            return ClassificationResult(is_trap=False, trap_type=TrapType.NONE)

        record = self.registry.get_record(session_id)
        if record is not None and not record.is_active(self.clock()):
            logger.warning(f'Trap activated - type: {TrapType.DEAD_SESSION.value}, session: {redact_session_id(session_id)}')
            self._alert_owner(session_id, record.host_fingerprint, accessor_fingerprint)
            return ClassificationResult(is_trap=True, trap_type=TrapType.DEAD_SESSION)

        if record is None:
            logger.debug(f'Unknown session probed: {redact_session_id(session_id)}')
        return ClassificationResult(is_trap=False, trap_type=TrapType.NONE)

    def _alert_owner(self, session_id: str, host_fingerprint: str, accessor_fingerprint: Optional[str]) -> None:
        """Dispatch the dead-session alert without waiting; never raises."""
        if self.dispatcher is None:
            return

        alert = HoneypotAlert(message=DEAD_SESSION_WARNING,
                              timestamp=to_iso_string(self.clock()),
                              accessor_fingerprint=accessor_fingerprint if is_valid_fingerprint(accessor_fingerprint) else 'unknown')
        try:
            self.dispatcher.dispatch(session_channel(session_id), host_fingerprint, alert)
        except Exception as e:
            logger.debug(f'Could not schedule honeypot alert: {e}')

    def rotate_honeytokens(self) -> Tuple[str, List[str]]:
        """
        Generate the day's batch of honeytokens.

        Tokens are not stored anywhere: any identifier with a reserved prefix
        is a trap, so a fresh batch only needs handing to whoever plants it.

        Returns:
            Tuple of (UTC date string, generated tokens)
        """
        today = datetime.fromtimestamp(self.clock(), tz=timezone.utc).date().isoformat()
        tokens = [generate_honeytoken(prefix) for prefix, count in ROTATION_BATCH for _ in range(count)]
        logger.info(f'Generated {len(tokens)} new honeytokens for {today}')
        return today, tokens
