"""
Safety Predicate

Visibility and block-list rules that run before any user-defined filter.
The predicate is not part of the compiled tree, so no combination of user
blocks can widen what a viewer is allowed to see.
"""

import logging

from feedengine.models import ContentEntry, Visibility


logger = logging.getLogger(__name__)


class SafetyPredicate:
    """
    Decides whether a viewer may see an entry at all.

    Rules:
    - Entries are hidden when either party has blocked the other
    - `private` entries are visible to their author only
    - `followers-only` entries are visible to their author and followers

    The social context passed in only needs `is_following` and
    `is_blocked`; the evaluation engine hands in its per-evaluation memo.
    """

    def __init__(self, social):
        """
        Initialize the predicate.

        Args:
            social: Object answering `is_following(a, b)` and `is_blocked(a, b)`
        """
        self.social = social

    def is_eligible(self, entry: ContentEntry, viewer_id: str) -> bool:
        """
        Check an entry against the viewer's visibility rules.

        Args:
            entry: Candidate entry
            viewer_id: The user the feed is evaluated for

        Returns:
            False if the entry must be hidden from the viewer
        """
        author_id = entry.author_id
        if author_id == viewer_id:
            return True

        if self.social.is_blocked(viewer_id, author_id) or self.social.is_blocked(author_id, viewer_id):
            # Which side blocked is never recorded.
            logger.debug(f"Entry {entry.id} excluded by a block relationship")
            return False

        if entry.visibility == Visibility.PRIVATE:
            return False
        if entry.visibility == Visibility.FOLLOWERS_ONLY:
            return self.social.is_following(viewer_id, author_id)
        return True
