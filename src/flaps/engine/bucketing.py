"""Stable bucketing for percentage rollouts.

The bucket of an entity is::

    murmur3_x86_32(utf8(scope_key + entity_id), seed=0) as unsigned % 100

with no separator between the two parts. This is the exact encoding
every SDK must reproduce so that independent evaluators agree on rollout
membership without coordinating. Golden vectors live in
``tests/unit/test_bucketing.py``.

``scope_key`` is the flag key for flag-level rollout and
``"<flag_key>:<rule_id>"`` for rule-level rollout, which keeps an
entity's buckets independent across flags and across rules of one flag.
"""

from __future__ import annotations

import mmh3

BUCKET_SEED = 0
BUCKET_COUNT = 100


def rule_scope(flag_key: str, rule_id: str) -> str:
    return f"{flag_key}:{rule_id}"


def bucket(scope_key: str, entity_id: str) -> int:
    """Deterministic bucket in [0, 100) for (scope_key, entity_id)."""
    key = (scope_key + entity_id).encode("utf-8")
    return mmh3.hash(key, seed=BUCKET_SEED, signed=False) % BUCKET_COUNT


def in_rollout(scope_key: str, entity_id: str, percentage: int) -> bool:
    """Whether the entity falls inside a ``percentage`` rollout.

    0 never includes and 100 always includes, without hashing.
    """
    if percentage >= BUCKET_COUNT:
        return True
    if percentage <= 0:
        return False
    return bucket(scope_key, entity_id) < percentage
