"""Renumbering of entity identifiers."""

import logging
from typing import Dict, TypeVar

import numpy as np

from ..graph import Feed
from ..ops import open_pool
from ..types import IdBase, TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)

E = TypeVar("E")


def format_id(number: int, base: IdBase) -> str:
    return np.base_repr(number, base=base).lower()


def renumber(collection: Dict[str, E], base: IdBase) -> Dict[str, E]:
    """Give every entity the next short id, in the collection's order."""
    renamed = {}
    for number, entity in enumerate(collection.values(), start=1):
        entity.id = format_id(number, base)
        renamed[entity.id] = entity
    return renamed


def minimize_ids(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Replace all ids by 1, 2, 3, ... in base 10 or base 36.

    Collections are independent because references are held as objects, so
    each one is renumbered in its own task and swapped in after all finish.
    """
    base = config.id_base or 10
    logger.info(f"Minimizing ids (base {base})")

    collections = feed.collections()
    with open_pool(config) as pool:
        futures = {name: pool.submit(renumber, coll, base) for name, coll in collections.items()}
        renamed = {name: future.result() for name, future in futures.items()}

    changed = 0
    for name, coll in renamed.items():
        changed += sum(1 for old_id, new_id in zip(collections[name], coll) if old_id != new_id)
        setattr(feed, name, coll)

    stats.ids_renamed += changed
    logger.info(f"Renamed {changed} ids")
    return feed
