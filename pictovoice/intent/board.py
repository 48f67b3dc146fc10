"""
pictovoice/intent/board.py — Pictogram board with geometric hit-testing.

Defines the pictogram vocabulary and lays it out as a grid of tiles in
viewport pixels. Tiles are separated by gaps, so a point can land between
tiles and resolve to nothing; the dwell selector's tolerance probe covers
that case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pictovoice.core.config import BoardConfig

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Pictogram vocabulary
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Pictogram:
    """
    A single pictogram on the board.

    Attributes:
        key: Concept key sent to phrase composition (e.g. ``'water'``).
        label: Human-readable label shown on the tile.
        emoji: Glyph drawn on the tile.
        tags: Free-form hint words shown under the label.
    """

    key: str
    label: str
    emoji: str
    tags: tuple[str, ...] = ()


PICTOGRAMS: tuple[Pictogram, ...] = (
    Pictogram("self",     "Me",             "👤", ("person",)),
    Pictogram("you",      "You",            "👥", ("listener",)),
    Pictogram("water",    "Glass of water", "💧", ("drink",)),
    Pictogram("food",     "Plate of food",  "🍽️", ("meal",)),
    Pictogram("yes",      "Yes",            "✅", ("confirm",)),
    Pictogram("no",       "No",             "❌", ("deny",)),
    Pictogram("bathroom", "Bathroom",       "🚽", ("need", "bathroom")),
    Pictogram("tv",       "Watch TV",       "📺", ("entertainment", "watch")),
    Pictogram("sleep",    "Sleep",          "😴", ("rest", "tired")),
    Pictogram("help",     "Help",           "🆘", ("assistance",)),
    Pictogram("pain",     "Something hurts", "😰", ("discomfort", "pain")),
    Pictogram("hot",      "I feel hot",     "🥵", ("temperature",)),
)


@dataclass(frozen=True)
class Tile:
    """A pictogram placed on the board, in viewport pixels."""

    pictogram: Pictogram
    row: int
    col: int
    left: float
    top: float
    width: float
    height: float

    def contains(self, x: float, y: float) -> bool:
        return (
            self.left <= x < self.left + self.width
            and self.top <= y < self.top + self.height
        )

    @property
    def centre(self) -> tuple[float, float]:
        return self.left + self.width / 2.0, self.top + self.height / 2.0


class PictogramBoard:
    """
    Grid of pictogram tiles implementing the ``TargetResolver`` capability.

    Args:
        config: Tile grid layout.
        viewport: ``(width, height)`` of the area the board fills.
        pictograms: Vocabulary to lay out, row-major.

    Raises:
        ValueError: If the vocabulary does not fit the grid or keys repeat.
    """

    def __init__(
        self,
        config: BoardConfig,
        viewport: tuple[float, float],
        pictograms: tuple[Pictogram, ...] = PICTOGRAMS,
    ) -> None:
        if len(pictograms) > config.columns * config.rows:
            raise ValueError(
                f"{len(pictograms)} pictograms do not fit a "
                f"{config.columns}x{config.rows} grid"
            )
        keys = [p.key for p in pictograms]
        if len(set(keys)) != len(keys):
            raise ValueError("pictogram keys must be unique")

        self._cfg = config
        self._pictograms = pictograms
        self._by_key = {p.key: p for p in pictograms}
        self._tiles: list[Tile] = []
        self.layout(*viewport)

    @property
    def tiles(self) -> list[Tile]:
        return list(self._tiles)

    @property
    def keys(self) -> list[str]:
        return [p.key for p in self._pictograms]

    def get(self, key: str) -> Optional[Pictogram]:
        """Look up a pictogram by concept key."""
        return self._by_key.get(key)

    def label_for(self, key: str) -> str:
        """Return the display label for *key*, or the key itself if unknown."""
        picto = self._by_key.get(key)
        return picto.label if picto else key

    def tile_for(self, key: str) -> Optional[Tile]:
        for tile in self._tiles:
            if tile.pictogram.key == key:
                return tile
        return None

    def layout(self, width: float, height: float) -> None:
        """Recompute tile rectangles for a viewport of ``width`` x ``height``."""
        cfg = self._cfg
        usable_w = width - 2 * cfg.margin_px - (cfg.columns - 1) * cfg.tile_gap_px
        usable_h = height - 2 * cfg.margin_px - (cfg.rows - 1) * cfg.tile_gap_px
        tile_w = max(1.0, usable_w / cfg.columns)
        tile_h = max(1.0, usable_h / cfg.rows)

        self._tiles = []
        for index, picto in enumerate(self._pictograms):
            row, col = divmod(index, cfg.columns)
            self._tiles.append(
                Tile(
                    pictogram=picto,
                    row=row,
                    col=col,
                    left=cfg.margin_px + col * (tile_w + cfg.tile_gap_px),
                    top=cfg.margin_px + row * (tile_h + cfg.tile_gap_px),
                    width=tile_w,
                    height=tile_h,
                )
            )
        logger.info(
            "PictogramBoard laid out: %d tiles, %dx%d grid, tile %.0fx%.0f px",
            len(self._tiles), cfg.columns, cfg.rows, tile_w, tile_h,
        )

    def resolve_target_at(self, x: float, y: float) -> Optional[str]:
        """
        Return the key of the tile containing (x, y), or None.

        Margins and inter-tile gaps resolve to None; only board tiles are
        eligible targets.
        """
        for tile in self._tiles:
            if tile.contains(x, y):
                return tile.pictogram.key
        return None
