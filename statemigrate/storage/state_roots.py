"""
Mapping from a block's legacy state root to its migrated unified root.
"""

from __future__ import annotations

import logging
from typing import Optional

from statemigrate.common.trie import Trie
from statemigrate.common.types import BlockInfo
from statemigrate.storage.datasource import KeyValueDataSource

logger = logging.getLogger(__name__)


class StateRootRegistry:

    def __init__(self, datasource: KeyValueDataSource) -> None:
        self._datasource = datasource

    def register(self, block: BlockInfo, trie: Trie) -> None:
        self._datasource.put(block.state_root, trie.hash)
        self._datasource.flush()
        logger.info(
            "Registered block %d: legacy root %s -> unified root %s",
            block.number, block.state_root.hex(), trie.hash.hex(),
        )

    def get(self, legacy_root: bytes) -> Optional[bytes]:
        return self._datasource.get(legacy_root)
