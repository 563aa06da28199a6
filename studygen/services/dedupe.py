"""
Near-duplicate removal for generated items.

Items are compared on the token set of ``question ||| answer``. When two
items are at least ``threshold`` similar the more confident one survives
and takes the position of the earlier one.
"""
from typing import List, Sequence, Set, Tuple

import structlog

from studygen.services.text_utils import jaccard, tokenize

logger = structlog.get_logger()


def deduplicate(items: Sequence, threshold: float = 0.7) -> List:
    """Return the unique items, most confident variant of each, in document order.

    Items are visited by descending confidence (stable for ties) and kept
    only when they are below ``threshold`` similar to everything kept so far,
    so the result contains no similar pair and running it again is a no-op.
    """
    order = sorted(range(len(items)), key=lambda i: items[i].confidence, reverse=True)
    kept: List[Tuple[int, Set[str], int]] = []  # (slot, tokens, item index)

    for i in order:
        tokens = set(tokenize(items[i].dedupe_text))
        for n, (slot, kept_tokens, idx) in enumerate(kept):
            if jaccard(tokens, kept_tokens) >= threshold:
                kept[n] = (min(slot, i), kept_tokens, idx)
                break
        else:
            kept.append((i, tokens, i))

    result = [items[idx] for slot, _, idx in sorted(kept, key=lambda k: k[0])]
    removed = len(items) - len(result)
    if removed:
        logger.info("duplicates_removed", total=len(items), removed=removed, threshold=threshold)
    return result
