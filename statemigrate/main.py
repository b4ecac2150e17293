"""
statemigrate: one-shot legacy-to-unified state migration.

Entry point:
  1. Parse CLI arguments
  2. Open the legacy and destination LMDB datasources under --datadir
  3. Migrate the state of the given block and verify it
  4. Persist the unified trie and register its root
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from statemigrate.common.config import STATE_ROOTS_DB, UNITRIE_DB, MigrationConfig
from statemigrate.common.errors import MigrationError
from statemigrate.common.types import BlockInfo
from statemigrate.migration.engine import UnitrieMigrationTool
from statemigrate.storage.disk_backend import open_datasource
from statemigrate.storage.repository import TrieRepository
from statemigrate.storage.state_roots import StateRootRegistry
from statemigrate.storage.trie_store import TrieStoreImpl


logger = logging.getLogger("statemigrate")


def _parse_hash(value: str) -> bytes:
    try:
        data = bytes.fromhex(value.removeprefix("0x"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid hex value: {value}") from exc
    if len(data) != 32:
        raise argparse.ArgumentTypeError(f"expected a 32-byte hash, got {len(data)} bytes")
    return data


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {number}")
    return number


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="statemigrate",
        description="Migrate a legacy account/contract state into a unified trie",
    )
    parser.add_argument(
        "--datadir",
        type=Path,
        required=True,
        help="Database directory holding the legacy datasources",
    )
    parser.add_argument(
        "--block-number",
        type=int,
        required=True,
        help="Number of the block whose state is migrated",
    )
    parser.add_argument(
        "--state-root",
        type=_parse_hash,
        required=True,
        help="Hex-encoded legacy state root of the block",
    )
    parser.add_argument(
        "--block-hash",
        type=_parse_hash,
        default=None,
        help="Hex-encoded block hash (informational)",
    )
    parser.add_argument(
        "--accounts-to-log",
        type=_positive_int,
        default=MigrationConfig.accounts_to_log,
        help="Log progress every N accounts (default: 500)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser


def run(
    data_dir: Path,
    block: BlockInfo,
    config: Optional[MigrationConfig] = None,
) -> bytes:
    """Migrate ``block`` under ``data_dir``. Returns the unified state root."""
    config = config or MigrationConfig()
    unitrie = open_datasource(UNITRIE_DB, data_dir, config.map_size)
    state_roots = open_datasource(STATE_ROOTS_DB, data_dir, config.map_size)
    tool = None
    try:
        tool = UnitrieMigrationTool.from_data_dir(
            block,
            data_dir,
            TrieRepository(TrieStoreImpl(unitrie)),
            StateRootRegistry(state_roots),
            config,
        )
        return tool.migrate().hash
    finally:
        if tool is not None:
            tool.close()
        unitrie.close()
        state_roots.close()


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    block = BlockInfo(
        number=args.block_number,
        state_root=args.state_root,
        hash=args.block_hash,
    )
    config = MigrationConfig(accounts_to_log=args.accounts_to_log)

    try:
        unified_root = run(args.datadir, block, config)
    except MigrationError as exc:
        logger.error("Migration of block %d failed: %s", block.number, exc)
        sys.exit(1)

    logger.info("Unified state root: 0x%s", unified_root.hex())


if __name__ == "__main__":
    main()
