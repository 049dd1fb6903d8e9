import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple, Type, TypeVar

from app.core import config
from app.core.errors import ReconciliationFailure, SlotConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    backoff_seconds: float = 0.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Espera antes da tentativa ``attempt + 1`` (attempt começa em 1)."""
        return self.backoff_seconds * (self.backoff_factor ** (attempt - 1))

    def run(
        self,
        fn: Callable[..., T],
        *args,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
        **kwargs,
    ) -> T:
        attempt = 1
        while True:
            try:
                return fn(*args, **kwargs)
            except retry_on as exc:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Tentativa %s/%s falhou (%s), nova tentativa em %.2fs",
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                if delay > 0:
                    sleep(delay)
                attempt += 1


# SlotConflict: nunca repete, o cliente escolhe outro horário
# ReconciliationFailure: repete com backoff, depois vai para SyncFailure
RETRY_POLICIES: Dict[Type[BaseException], RetryPolicy] = {
    SlotConflict: RetryPolicy(max_attempts=1),
    ReconciliationFailure: RetryPolicy(
        max_attempts=config.RECONCILE_MAX_ATTEMPTS,
        backoff_seconds=config.RECONCILE_BACKOFF_SECONDS,
    ),
}

NO_RETRY = RetryPolicy(max_attempts=1)


def policy_for(error_type: Type[BaseException]) -> RetryPolicy:
    for cls in error_type.__mro__:
        if cls in RETRY_POLICIES:
            return RETRY_POLICIES[cls]
    return NO_RETRY
