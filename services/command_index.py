import logging
from typing import Callable, List, Optional, Protocol, Tuple

from services.metrics import metrics, record_lookup_failure
from services.models import DEFAULT_PREFIX, Command, ListItem, ListSection

logger = logging.getLogger(__name__)

STRATEGY_PREFIXED = "prefixed"
STRATEGY_EXACT = "exact"
STRATEGY_SUBSTRING = "substring"


class LookupProvider(Protocol):
    def find_prefixed(self, text: str) -> Optional[Command]: ...

    def find_unprefixed_exact(self, text: str) -> Optional[Command]: ...

    def find_unprefixed_substring(self, text: str) -> Optional[Command]: ...

    def load_sections(self, command_id: int) -> List[ListSection]: ...

    def load_items(self, section_id: int) -> List[ListItem]: ...


class CommandIndex:
    """Resolves raw inbound text to at most one custom command.

    Strategies run in priority order and the first hit wins:
    prefixed exact, unprefixed exact, unprefixed substring.
    """

    def __init__(self, provider: LookupProvider, prefix: str = DEFAULT_PREFIX):
        self.provider = provider
        self.prefix = prefix or DEFAULT_PREFIX

    def _strategies(self, lowered: str) -> List[Tuple[str, Callable[[str], Optional[Command]]]]:
        steps: List[Tuple[str, Callable[[str], Optional[Command]]]] = []
        if lowered.startswith(self.prefix):
            steps.append((STRATEGY_PREFIXED, self.provider.find_prefixed))
        steps.append((STRATEGY_EXACT, self.provider.find_unprefixed_exact))
        steps.append((STRATEGY_SUBSTRING, self.provider.find_unprefixed_substring))
        return steps

    def match(self, raw_text: str) -> Tuple[Optional[Command], Optional[str]]:
        """Return ``(command, strategy)``; ``(None, None)`` when nothing matched."""
        lowered = str(raw_text or "").strip().lower()
        if not lowered:
            return None, None

        with metrics.timer("command_lookup"):
            for strategy, finder in self._strategies(lowered):
                try:
                    command = finder(lowered)
                except Exception as exc:
                    # Storage trouble degrades to "no match" for the rest of this message.
                    logger.error("Command lookup (%s) failed for %r: %s", strategy, lowered[:50], exc)
                    record_lookup_failure(strategy)
                    return None, None
                if command is not None:
                    logger.debug("Matched command #%s via %s", command.id, strategy)
                    return command, strategy
        return None, None

    def lookup(self, raw_text: str) -> Optional[Command]:
        command, _ = self.match(raw_text)
        return command
