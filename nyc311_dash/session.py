# session.py
import itertools
import logging

logger = logging.getLogger(__name__)


class LatestSelection:
    """Holds what a view is currently showing and drops stale responses.

    Each ``load`` takes a new generation number. When a load finishes, its
    result (or error) is written only if no newer load has started since;
    otherwise it is discarded. Completion order of the loads does not matter.

    The view functions are plain coroutines; a front end that lets the user
    switch selection mid-fetch awaits them through this, e.g.
    ``await sel.load(name, lambda: views.borough_report(fetcher, name, a, b))``.
    """

    def __init__(self):
        self._generations = itertools.count(1)
        self.generation = 0
        self.key = None
        self.state = None
        self.error = None
        self.loading = False

    def is_current(self, generation):
        return generation == self.generation

    async def load(self, key, loader):
        """Run ``loader()`` for selection ``key``; True if its outcome was applied."""
        generation = next(self._generations)
        self.generation = generation
        self.key = key
        self.loading = True
        try:
            result = await loader()
        except Exception as exc:
            if not self.is_current(generation):
                logger.debug("Dropping stale error for %r: %s", key, exc)
                return False
            logger.error("Load failed for %r: %s", key, exc)
            self.error = exc
            self.loading = False
            return True
        if not self.is_current(generation):
            logger.debug("Dropping stale result for %r (generation %d < %d)",
                         key, generation, self.generation)
            return False
        self.state = result
        self.error = None
        self.loading = False
        return True
