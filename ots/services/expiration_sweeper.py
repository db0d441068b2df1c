"""Background deletion of secrets that expired without being read.

A safety net only: consume_once already refuses expired rows, so the sweeper
merely bounds storage growth. A failed pass is logged and the next tick
retries; it is never fatal.
"""

import asyncio
import logging
import sys
import time
from typing import Optional

from ots.exceptions import StorageError
from ots.services.metrics import SecretMetrics
from ots.services.secret_store import SecretStore
from ots.utils.error_handling import log_and_continue

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """Deletes expired rows via SecretStore.delete_expired."""

    def __init__(self, store: SecretStore, metrics: Optional[SecretMetrics] = None) -> None:
        self.store = store
        self.metrics = metrics
        self.last_run_removed: Optional[int] = None
        self.failures = 0

    async def sweep_once(self) -> int:
        """Run one pass.

        Returns:
            Rows removed, or 0 if the pass failed
        """
        start = time.monotonic()
        try:
            removed = await self.store.delete_expired()
        except StorageError as e:
            self.failures += 1
            log_and_continue(logger, e, "Expiration sweep failed, retrying next tick")
            return 0

        self.last_run_removed = removed
        if self.metrics and removed:
            self.metrics.secrets_expired_swept.inc(removed)

        if removed:
            logger.info(
                f"Cleaned up {removed} expired secrets in {time.monotonic() - start:.3f}s"
            )
        else:
            logger.debug("Expiration sweep found nothing to remove")
        return removed


async def _run_standalone() -> int:
    """One sweep against DATABASE_URL, for cron-style deployments."""
    from ots.config import Settings
    from ots.database import build_engine, build_session_factory, init_db

    logging.basicConfig(
        level="INFO", format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    settings = Settings.from_env()
    engine = build_engine(settings.database_url)
    try:
        await init_db(engine)
        sweeper = ExpirationSweeper(SecretStore(build_session_factory(engine)))
        await sweeper.sweep_once()
        return 1 if sweeper.failures else 0
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(_run_standalone()))
