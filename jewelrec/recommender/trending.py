"""Trending scorer.

Global popularity over a short recent window, decayed faster than the
long-horizon signals. Not personalized: every caller sees the same scores at
a given point in time.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Optional, Set

from jewelrec.config import RecommenderConfig
from jewelrec.recommender.utils import event_score, normalize_by_max, utc_now
from jewelrec.store import BehaviorStore

# Configure module logger
logger = logging.getLogger(__name__)


def trending_scores(
    behavior_store: BehaviorStore,
    exclude: Set[str],
    config: Optional[RecommenderConfig] = None,
    now: Optional[datetime] = None,
) -> Dict[str, float]:
    """Score products by recent aggregate engagement.

    Args:
        behavior_store: Behavior event log.
        exclude: Product IDs never to score. Not modified.
        config: Tuning parameters. Defaults to ``RecommenderConfig()``.
        now: Reference time for the window and decay.

    Returns:
        Product ID to score normalized into [0, 1].
    """
    config = config or RecommenderConfig()
    now = now or utc_now()
    since = now - timedelta(days=config.trending_window_days)

    events = behavior_store.fetch_recent_events(
        since=since, limit=config.trending_fetch_limit
    )

    scores: Dict[str, float] = defaultdict(float)
    for event in events:
        if event.product_id in exclude:
            continue
        scores[event.product_id] += event_score(event, config.trending_decay_rate, now)

    logger.debug(
        "Trending scorer scored products",
        extra={"num_events": len(events), "num_scored": len(scores)},
    )
    return normalize_by_max(scores)
