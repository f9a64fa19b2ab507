import logging
from typing import NamedTuple, Optional


logger = logging.getLogger(__name__)


class SkippedTile(NamedTuple):
    gid: int
    reason: str
    context: Optional[str]


class ImportReport:
    """What a non-strict import silently degraded, so callers can tell a clean run from a lossy one."""

    def __init__(self) -> None:
        self.skipped_tiles: list[SkippedTile] = []
        self.warnings: list[str] = []

    @property
    def clean(self) -> bool:
        return len(self.skipped_tiles) == 0 and len(self.warnings) == 0

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_tiles)

    @property
    def unresolved(self) -> list[tuple[int, Optional[str]]]:
        return [(skipped.gid, skipped.context) for skipped in self.skipped_tiles]

    def skip_tile(self, gid: int, reason: str, context: Optional[str] = None) -> None:
        logger.warning(f"Could not find tile {gid} in {context}: {reason}" if context else f"Could not find tile {gid}: {reason}")
        self.skipped_tiles.append(SkippedTile(gid, reason, context))

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)
