#!/usr/bin/env python3
"""
Cluster state store: advisory lock plus the scaling state machine

The cluster record lives in a single Redis key as a JSON document. Every
mutation is an optimistic transaction (WATCH / MULTI / EXEC): the record is
read, the expected state is checked, and the write only commits if nobody
touched the key in between. Callers never get raw read-modify-write access.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Any, Iterable, List, Optional

import redis

from smartscale.exceptions import ConditionFailedError, StateStoreError
from .redis_client import RedisClient
from .schemas import (
    ClusterState,
    LockRecord,
    ScaleUpAction,
    ScaleDownAction,
    ScalingEventType
)

logger = logging.getLogger(__name__)

HISTORY_LENGTH = 100


class ClusterStateStore:
    """Conditional operations over the per-cluster state record and lock"""

    def __init__(self, redis_client: RedisClient, cluster_id: str,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the state store

        Args:
            redis_client: Connected Redis wrapper
            cluster_id: Identifies the cluster record and lock
            clock: Time source for lock expiry when no `now` is passed
        """
        self.redis = redis_client
        self.cluster_id = cluster_id
        self._clock = clock
        self.state_key = f"state:{cluster_id}"
        self.lock_key = f"lock:{cluster_id}"
        self.history_key = f"history:{cluster_id}"

    # Lock

    def acquire_lock(self, owner: str, ttl: int, now: Optional[float] = None) -> bool:
        """
        Try to take the cluster lock without blocking

        Succeeds if no lock is held, the lock already belongs to owner, or
        the existing lock has expired. Losing a race to another acquirer
        returns False.

        Raises:
            StateStoreError: If Redis is unreachable
        """
        now = self._clock() if now is None else now
        redis_key = self.redis.make_key(self.lock_key)
        try:
            with self.redis.client.pipeline() as pipe:
                pipe.watch(redis_key)
                current = self._decode(pipe.get(redis_key))
                if current:
                    lock = LockRecord.from_dict(current)
                    if lock.held and lock.owner != owner and not lock.is_expired(now):
                        logger.debug(f"Lock held by {lock.owner} until {lock.expires_at}")
                        return False

                record = LockRecord(held=True, owner=owner, expires_at=now + ttl)
                pipe.multi()
                # Redis expiry backs up the recorded deadline
                pipe.set(redis_key, json.dumps(record.to_dict()), ex=max(1, int(ttl)))
                pipe.execute()
                return True
        except redis.WatchError:
            logger.debug(f"Lost lock race for {self.cluster_id}")
            return False
        except redis.RedisError as e:
            raise StateStoreError(f"Failed to acquire lock: {e}") from e

    def release_lock(self, owner: str) -> bool:
        """Release the lock if owner still holds it; failures are swallowed"""
        redis_key = self.redis.make_key(self.lock_key)
        try:
            with self.redis.client.pipeline() as pipe:
                pipe.watch(redis_key)
                current = self._decode(pipe.get(redis_key))
                if not current or LockRecord.from_dict(current).owner != owner:
                    logger.debug(f"Lock no longer owned by {owner}, leaving it to expire")
                    return False
                pipe.multi()
                pipe.delete(redis_key)
                pipe.execute()
                return True
        except (redis.RedisError, StateStoreError) as e:
            logger.warning(f"Could not release lock for {owner}: {e}")
            return False

    def get_lock(self) -> Optional[LockRecord]:
        data = self._get(self.lock_key)
        return LockRecord.from_dict(data) if data else None

    # State

    def get_state(self) -> ClusterState:
        """Strongly consistent read of the cluster record"""
        return self._parse_state(self._get(self.state_key))

    def begin_scale_up(self, action_id: str, now: int) -> ClusterState:
        """Start a scale-up; fails if any action is in progress"""
        def mutate(state: ClusterState) -> ClusterState:
            self._require_idle(state, action_id)
            state.action = ScaleUpAction(action_id=action_id, started_epoch=now)
            return state
        return self._update(mutate, "begin_scale_up")

    def record_scale_up_instances(self, action_id: str, instance_ids: Iterable[str]) -> ClusterState:
        """Attach launched instance ids to the matching scale-up"""
        def mutate(state: ClusterState) -> ClusterState:
            action = self._require_action(state, ScaleUpAction, action_id)
            action.launched_instance_ids = list(instance_ids)
            return state
        return self._update(mutate, "record_scale_up_instances")

    def complete_scale_up(self, action_id: str, now: int) -> ClusterState:
        """Finish the matching scale-up and start the cooldown"""
        def mutate(state: ClusterState) -> ClusterState:
            self._require_action(state, ScaleUpAction, action_id)
            state.action = None
            state.last_scale_epoch = now
            return state
        return self._update(mutate, "complete_scale_up")

    def begin_scale_down(self, action_id: str, now: int, targets: Iterable[str]) -> ClusterState:
        """Start a scale-down over targets; fails if any action is in progress"""
        def mutate(state: ClusterState) -> ClusterState:
            self._require_idle(state, action_id)
            state.action = ScaleDownAction(
                action_id=action_id,
                started_epoch=now,
                target_instance_ids=set(targets)
            )
            return state
        return self._update(mutate, "begin_scale_down")

    def mark_scale_down_completed(self, action_id: str, instance_id: str) -> ClusterState:
        """Record one terminated target of the matching scale-down"""
        def mutate(state: ClusterState) -> ClusterState:
            action = self._require_action(state, ScaleDownAction, action_id)
            action.completed_instance_ids.add(instance_id)
            return state
        return self._update(mutate, "mark_scale_down_completed")

    def complete_scale_down(self, action_id: str, now: int) -> ClusterState:
        """Finish the matching scale-down and start the cooldown"""
        def mutate(state: ClusterState) -> ClusterState:
            self._require_action(state, ScaleDownAction, action_id)
            state.action = None
            state.last_scale_epoch = now
            return state
        return self._update(mutate, "complete_scale_down")

    def fail_scaling(self, now: int) -> ClusterState:
        """
        Unconditionally drop any in-flight action

        Only for actions recovery has given up on. The action record is lost
        and last_scale_epoch is left alone. A record that no longer parses is
        overwritten, keeping whatever counters can still be read from it.
        """
        def mutate(state: ClusterState) -> ClusterState:
            if state.action:
                logger.warning(f"Abandoning {state.action.kind} action {state.action.action_id} at {now}")
            state.action = None
            return state
        return self._update(mutate, "fail_scaling", reset_corrupt=True)

    def record_worker_count(self, count: int) -> ClusterState:
        """Store the latest inventory count (informational only)"""
        def mutate(state: ClusterState) -> ClusterState:
            state.worker_count = count
            return state
        return self._update(mutate, "record_worker_count")

    # History

    def record_event(self, event_type: ScalingEventType, action_id: Optional[str] = None,
                     details: Optional[Dict[str, Any]] = None) -> bool:
        """Append to the capped scaling history"""
        event = {
            "event_type": event_type.value,
            "action_id": action_id,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        return self.redis.lpush_capped(self.history_key, event, HISTORY_LENGTH)

    def get_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self.redis.lrange_json(self.history_key, 0, limit - 1)

    # Internals

    @staticmethod
    def _require_idle(state: ClusterState, action_id: str):
        if state.scaling_in_progress:
            raise ConditionFailedError(
                f"Cannot begin {action_id}: action {state.action_id} already in progress"
            )

    @staticmethod
    def _require_action(state: ClusterState, action_type, action_id: str):
        action = state.action
        if not isinstance(action, action_type) or action.action_id != action_id:
            raise ConditionFailedError(
                f"Expected {action_type.kind} action {action_id}, found {state.action_id or 'none'}"
            )
        return action

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[Dict[str, Any]]:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise StateStoreError(f"Corrupt record: {e}") from e

    @staticmethod
    def _parse_state(data: Optional[Dict[str, Any]]) -> ClusterState:
        try:
            return ClusterState.from_dict(data)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise StateStoreError(f"Corrupt state record: {e!r}") from e

    @staticmethod
    def _salvage(raw: Optional[str]) -> ClusterState:
        """Idle state carrying the counters of an unparseable record, where readable"""
        state = ClusterState()
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return state
        if not isinstance(data, dict):
            return state
        for field_name in ("last_scale_epoch", "worker_count"):
            try:
                setattr(state, field_name, int(data.get(field_name, 0)))
            except (ValueError, TypeError):
                pass
        return state

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            return self._decode(self.redis.client.get(self.redis.make_key(key)))
        except redis.RedisError as e:
            raise StateStoreError(f"Failed to read {key}: {e}") from e

    def _update(self, mutate: Callable[[ClusterState], ClusterState], operation: str,
                reset_corrupt: bool = False) -> ClusterState:
        """
        Apply mutate to the current record inside an optimistic transaction

        With reset_corrupt, an unparseable record is replaced by a salvaged
        idle state instead of raising StateStoreError.
        """
        redis_key = self.redis.make_key(self.state_key)
        try:
            with self.redis.client.pipeline() as pipe:
                pipe.watch(redis_key)
                raw = pipe.get(redis_key)
                try:
                    state = self._parse_state(self._decode(raw))
                except StateStoreError as e:
                    if not reset_corrupt:
                        raise
                    logger.warning(f"{operation}: overwriting unreadable state record ({e})")
                    state = self._salvage(raw)
                new_state = mutate(state)
                pipe.multi()
                pipe.set(redis_key, json.dumps(new_state.to_dict()))
                pipe.execute()
        except redis.WatchError as e:
            raise ConditionFailedError(f"{operation}: record modified concurrently") from e
        except ConditionFailedError as e:
            logger.info(f"{operation} rejected: {e}")
            raise
        except redis.RedisError as e:
            raise StateStoreError(f"{operation} failed: {e}") from e

        logger.debug(f"{operation} committed: {new_state.to_dict()}")
        return new_state
