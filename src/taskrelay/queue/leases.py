from __future__ import annotations

import time
import uuid
from typing import Callable

from taskrelay.errors import NotFound, NotLeaseHolder, StoreUnavailable
from taskrelay.ops import metrics
from taskrelay.store.interfaces import KVStore
from taskrelay.utils.log import logger

from .interfaces import QueueConfig, QueueKeys, ReleaseOutcome
from .models import LeaseRecord, iso_from_ts


class LeaseCoordinator:
    """
    Lease bookkeeping over plain KV keys (lease:{task_id}).

    Availability is computed with one `list(lease prefix)` per claim cycle
    instead of one `get` per pending id. Expiry is the store's TTL: an expired
    lease is simply absent.
    """

    def __init__(
        self,
        store: KVStore,
        config: QueueConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cfg = config
        self._keys = config.keys
        self._clock = clock

    async def compute_available(self, pending: list[str]) -> list[str]:
        """
        Pending ids without an active lease, in their original order.

        A failed lease enumeration yields [] so no task is handed out twice
        while lease state is unknown.
        """
        if not pending:
            return []
        metrics.store_list_calls.labels(namespace="lease").inc()
        try:
            keys = await self._store.list(self._keys.lease_prefix)
        except StoreUnavailable as ex:
            metrics.lease_enumeration_failures.inc()
            logger.error("lease_enumeration_failed", error=str(ex), pending=len(pending))
            return []
        leased = {QueueKeys.strip(k, self._keys.lease_prefix) for k in keys}
        return [tid for tid in pending if tid not in leased]

    async def get(self, task_id: str) -> LeaseRecord | None:
        raw = await self._store.get(self._keys.lease(task_id))
        if not isinstance(raw, dict):
            return None
        try:
            return LeaseRecord.from_dict(raw)
        except (KeyError, TypeError):
            logger.warning("lease_record_corrupt", task_id=str(task_id))
            return None

    async def acquire(self, task_id: str, worker_id: str, *, lease_sec: int | None = None) -> LeaseRecord | None:
        """
        Write a lease for `worker_id` and read it back.

        Returns None when another worker holds (or just took) the lease. The
        store has no compare-and-set, so two writers can still both pass the
        read-back in a narrow window; task handlers must be idempotent.
        """
        existing = await self.get(task_id)
        if existing is not None and existing.worker_id != str(worker_id):
            return None

        ttl = self._cfg.clamp_lease(lease_sec)
        now = self._clock()
        lease = LeaseRecord(
            task_id=str(task_id),
            worker_id=str(worker_id),
            acquired_at=iso_from_ts(now),
            expires_at=iso_from_ts(now + ttl),
            claim_nonce=uuid.uuid4().hex,
        )
        await self._store.put(self._keys.lease(task_id), lease.to_dict(), ttl_sec=ttl)

        check = await self.get(task_id)
        if check is None or check.claim_nonce != lease.claim_nonce:
            logger.info(
                "lease_acquire_lost_race",
                task_id=str(task_id),
                worker_id=str(worker_id),
                holder=(check.worker_id if check else None),
            )
            return None
        logger.info("lease_acquired", task_id=str(task_id), worker_id=str(worker_id), lease_sec=ttl)
        return lease

    async def release(self, task_id: str, worker_id: str | None = None) -> ReleaseOutcome:
        lease = await self.get(task_id)
        if lease is None:
            return ReleaseOutcome.no_lease
        if worker_id is not None and lease.worker_id != str(worker_id):
            return ReleaseOutcome.not_holder
        await self._store.delete(self._keys.lease(task_id))
        logger.info("lease_released", task_id=str(task_id), worker_id=lease.worker_id)
        return ReleaseOutcome.released

    async def renew(self, task_id: str, worker_id: str, *, extend_sec: int | None = None) -> LeaseRecord:
        lease = await self.get(task_id)
        if lease is None:
            raise NotFound("lease", task_id)
        if lease.worker_id != str(worker_id):
            raise NotLeaseHolder(task_id, worker_id)
        ttl = self._cfg.clamp_lease(extend_sec)
        now = self._clock()
        renewed = LeaseRecord(
            task_id=lease.task_id,
            worker_id=lease.worker_id,
            acquired_at=lease.acquired_at,
            expires_at=iso_from_ts(now + ttl),
            claim_nonce=lease.claim_nonce,
            renewed_at=iso_from_ts(now),
        )
        await self._store.put(self._keys.lease(task_id), renewed.to_dict(), ttl_sec=ttl)
        logger.debug("lease_renewed", task_id=str(task_id), worker_id=str(worker_id), lease_sec=ttl)
        return renewed

    async def drop(self, task_id: str) -> None:
        """Delete the lease regardless of holder (task finished or cancelled)."""
        await self._store.delete(self._keys.lease(task_id))
