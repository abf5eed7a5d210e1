#    Copyright 2025 FAO
# 
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
# 
#        http://www.apache.org/licenses/LICENSE-2.0
# 
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
# 
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

"""
Key sharding.

A shard is a single leading byte of every storage key of an index. Spreading writes
over shards avoids hot spots on sequential curve keys; the price is that every range
scan has to be replicated once per shard and the results merged by the caller.
"""

import hashlib
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Union

from dynaindex.exceptions import InvalidShardCountError

logger = logging.getLogger(__name__)

# the shard byte keeps its high bit clear
MAX_SHARDS = 127


class ShardMode(str, Enum):
    HASH = "hash"
    ROUND_ROBIN = "round_robin"


def validate_shard_count(count: int) -> int:
    if isinstance(count, bool) or not isinstance(count, int):
        raise InvalidShardCountError(f"Shard count must be an integer, got: {count!r}")
    if count < 1 or count > MAX_SHARDS:
        raise InvalidShardCountError(f"Shard count must be in [1,{MAX_SHARDS}], got: {count}")
    return count


class ShardStrategy(ABC):
    """Assigns a shard prefix to each feature."""

    def __init__(self, count: int):
        self.count = validate_shard_count(count)

    @property
    def length(self) -> int:
        """Number of bytes the shard prefix occupies in a key."""
        return 0 if self.count == 1 else 1

    @property
    def shards(self) -> List[bytes]:
        """Every shard prefix, in key order."""
        if self.count == 1:
            return [b""]
        return [bytes([i]) for i in range(self.count)]

    @abstractmethod
    def shard(self, feature_id: str) -> bytes:
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(count={self.count})"


class NoShardStrategy(ShardStrategy):
    """Single shard: keys carry no prefix."""

    def __init__(self):
        super().__init__(1)

    def shard(self, feature_id: str) -> bytes:
        return b""


class HashShardStrategy(ShardStrategy):
    """Shard by a hash of the feature id: even load, no locality."""

    def shard(self, feature_id: str) -> bytes:
        digest = hashlib.md5(str(feature_id).encode('utf-8')).digest()
        return bytes([int.from_bytes(digest[:4], "big") % self.count])


class RoundRobinShardStrategy(ShardStrategy):
    """
    Cycles through shards in write order. Keys of the same feature written twice
    may land in different shards, so this is only meant for test setups.
    """

    def __init__(self, count: int):
        super().__init__(count)
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def shard(self, feature_id: str) -> bytes:
        with self._lock:
            n = next(self._counter)
        return bytes([n % self.count])


def shard_strategy(count: int, mode: Union[str, ShardMode] = ShardMode.HASH) -> ShardStrategy:
    """
    Builds the shard strategy of an index.

    Raises:
        InvalidShardCountError: If `count` is outside [1,127].
    """
    validate_shard_count(count)
    mode = ShardMode(mode)
    if count == 1:
        return NoShardStrategy()
    if mode == ShardMode.ROUND_ROBIN:
        return RoundRobinShardStrategy(count)
    return HashShardStrategy(count)
