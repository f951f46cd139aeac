"""
Ownership of enquiries and leads.

A record is owned by exactly one of: a named agent, one of the numbered
reallocation pools, or nobody. The owner column and the pool column are
never both set; `owner_of` turns the pair into a value object.
"""
from dataclasses import dataclass
from typing import Optional, Union

from .exceptions import ValidationError

POOL_NUMBERS = (1, 2, 3)
POOL_CHOICES = [(n, f'Pool {n}') for n in POOL_NUMBERS]


@dataclass(frozen=True)
class AgentOwner:
    agent_id: int


@dataclass(frozen=True)
class PoolOwner:
    pool: int

    @property
    def tag(self) -> str:
        return pool_tag(self.pool)


@dataclass(frozen=True)
class Unowned:
    pass


Owner = Union[AgentOwner, PoolOwner, Unowned]


def pool_tag(pool: Optional[int]) -> Optional[str]:
    return f'POOL_{pool}' if pool else None


def parse_pool(value) -> int:
    """Accept 1..3, "1".."3" or "POOL_1".."POOL_3"; anything else is rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid pool '{value}'. Expected one of POOL_1, POOL_2, POOL_3.")
    raw = value
    if isinstance(raw, str):
        raw = raw.strip().upper()
        if raw.startswith('POOL_'):
            raw = raw[len('POOL_'):]
        if not raw.isdigit():
            raise ValidationError(f"Invalid pool '{value}'. Expected one of POOL_1, POOL_2, POOL_3.")
        raw = int(raw)
    if raw not in POOL_NUMBERS:
        raise ValidationError(f"Invalid pool '{value}'. Expected one of POOL_1, POOL_2, POOL_3.")
    return raw


def owner_of(owner_id: Optional[int], pool: Optional[int]) -> Owner:
    if owner_id is not None:
        return AgentOwner(owner_id)
    if pool is not None:
        return PoolOwner(pool)
    return Unowned()
