"""Tiled grid conventions mapped onto a y-up target grid.

The target grid has one cell per unit horizontally, rows grow upwards, hexagonal
cells only stagger along Y with even parity and isometric diamonds are rotated
90 degrees compared to Tiled. Everything here is worked out once per map.
"""
import enum
import logging
from typing import NamedTuple, Optional

from pygame.math import Vector2

from tiled_importer.errors import UnsupportedOrientation
from tiled_importer.model import TiledMap


logger = logging.getLogger(__name__)


class Orientation(enum.Enum):
    ORTHOGONAL = "orthogonal"
    ISOMETRIC = "isometric"
    HEXAGONAL = "hexagonal"

    @classmethod
    def parse(cls, value: str, context: Optional[str] = None) -> 'Orientation':
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedOrientation(value, context) from None


class StaggerAxis(enum.Enum):
    X = "x"
    Y = "y"


class StaggerIndex(enum.Enum):
    ODD = "odd"
    EVEN = "even"


class CellLayout(enum.Enum):
    RECTANGLE = enum.auto()
    ISOMETRIC = enum.auto()
    HEXAGON = enum.auto()


class SortOrder(enum.Enum):
    TOP_LEFT = enum.auto()
    BOTTOM_LEFT = enum.auto()
    TOP_RIGHT = enum.auto()
    BOTTOM_RIGHT = enum.auto()


RENDER_ORDERS = {
    "right-down": SortOrder.TOP_LEFT,
    "right-up": SortOrder.BOTTOM_LEFT,
    "left-down": SortOrder.TOP_RIGHT,
    "left-up": SortOrder.BOTTOM_RIGHT,
}


class HexOffset(NamedTuple):
    grid_offset: tuple[int, int]
    position_offset: Vector2


# (stagger axis, odd stagger index needing conversion to even) -> (grid offset, position offset in cells)
HEX_OFFSETS = {
    (StaggerAxis.X, True): ((1, 0), (-0.25, 0.0)),
    (StaggerAxis.Y, True): ((0, 1), (0.5, 1.0)),
    (StaggerAxis.X, False): ((1, 0), (-0.25, -0.5)),
    (StaggerAxis.Y, False): ((0, 0), (0.5, 0.25)),
}

NO_HEX_OFFSET = HexOffset((0, 0), Vector2(0, 0))


def hex_offset(axis: StaggerAxis, needs_odd_to_even: bool, cell_width: float, cell_height: float) -> HexOffset:
    grid_offset, (fx, fy) = HEX_OFFSETS[(axis, needs_odd_to_even)]
    return HexOffset(grid_offset, Vector2(cell_width * fx, cell_height * fy))


def isometric_pixel_to_screen(x: float, y: float, tilewidth: int, tileheight: int) -> Vector2:
    """Tiled measures isometric object positions along the diamond axes, in tile-height pixels.

    The result is in target units where one tile is one unit wide, with y pointing up.
    """
    tx = x / tileheight
    ty = y / tileheight
    return Vector2((tx - ty) * 0.5, -(tx + ty) * 0.5 * tileheight / tilewidth)


class GridTransform:
    def __init__(self, orientation: Orientation, tilewidth: int, tileheight: int,
                 stagger_axis: StaggerAxis = StaggerAxis.Y, needs_odd_to_even: bool = False) -> None:
        self.orientation = orientation
        self.tilewidth = tilewidth
        self.tileheight = tileheight
        self.stagger_axis = stagger_axis
        self.needs_odd_to_even = needs_odd_to_even and orientation == Orientation.HEXAGONAL

        self.rotate_for_isometric = orientation == Orientation.ISOMETRIC
        self.swap_for_stagger_x = orientation == Orientation.HEXAGONAL and stagger_axis == StaggerAxis.X

        if orientation == Orientation.HEXAGONAL:
            self.cell_layout = CellLayout.HEXAGON
        elif orientation == Orientation.ISOMETRIC:
            self.cell_layout = CellLayout.ISOMETRIC
        else:
            self.cell_layout = CellLayout.RECTANGLE

        if self.cell_layout == CellLayout.RECTANGLE or tilewidth == 0:
            self.cell_size = Vector2(1.0, 1.0)
        else:
            self.cell_size = Vector2(1.0, tileheight / tilewidth)
        self.cell_swizzle = "YXZ" if self.swap_for_stagger_x else "XYZ"

        self.hex_offset = self._compute_hex_offset()

    def __repr__(self) -> str:
        return f"GridTransform({self.orientation.value}, stagger={self.stagger_axis.value}, odd_to_even={self.needs_odd_to_even})"

    @classmethod
    def for_map(cls, tiled_map: TiledMap, context: Optional[str] = None) -> 'GridTransform':
        orientation = Orientation.parse(tiled_map.orientation, context)
        stagger_axis = StaggerAxis.X if tiled_map.staggeraxis.lower() == "x" else StaggerAxis.Y
        stagger_index = StaggerIndex.EVEN if tiled_map.staggerindex.lower() == "even" else StaggerIndex.ODD
        # the target hexagon grid only staggers even rows/columns
        needs_odd_to_even = orientation == Orientation.HEXAGONAL and stagger_index == StaggerIndex.ODD
        return cls(orientation, tiled_map.tilewidth, tiled_map.tileheight, stagger_axis, needs_odd_to_even)

    def _compute_hex_offset(self) -> HexOffset:
        if self.orientation != Orientation.HEXAGONAL:
            return NO_HEX_OFFSET
        return hex_offset(self.stagger_axis, self.needs_odd_to_even, self.cell_size.x, self.cell_size.y)

    @property
    def grid_offset(self) -> tuple[int, int]:
        return self.hex_offset.grid_offset

    @property
    def position_offset(self) -> Vector2:
        return Vector2(self.hex_offset.position_offset)

    def cell_position(self, col: int, row: int, origin_x: int = 0, origin_y: int = 0) -> tuple[int, int]:
        """Target cell for the tile at (col, row) of a block whose top-left tile is at (origin_x, origin_y)."""
        gx, gy = self.grid_offset
        x = origin_x + gx + col
        y = -(origin_y + gy + row + 1)
        if self.rotate_for_isometric:
            # 90 degrees clockwise
            return y, -x
        if self.swap_for_stagger_x:
            # 90 degrees clockwise and mirrored, matching the YXZ swizzle
            return y, x
        return x, y

    def layer_offset(self, offset: Vector2) -> Vector2:
        if self.tilewidth == 0 or self.tileheight == 0:
            return Vector2(0, 0)
        return Vector2(offset.x * self.cell_size.x / self.tilewidth, -offset.y * self.cell_size.y / self.tileheight)

    def pixel_to_units(self, x: float, y: float) -> Vector2:
        if self.tilewidth == 0 or self.tileheight == 0:
            return Vector2(0, 0)
        if self.rotate_for_isometric:
            return isometric_pixel_to_screen(x, y, self.tilewidth, self.tileheight)
        return Vector2(x / self.tilewidth, -y / self.tileheight)

    def scale_to_units(self, x: float, y: float) -> Vector2:
        """Pixel offsets within an object (polygon points) in units, on every orientation."""
        if self.tilewidth == 0 or self.tileheight == 0:
            return Vector2(0, 0)
        return Vector2(x / self.tilewidth, -y / self.tileheight)

    def size_to_units(self, width: float, height: float) -> Vector2:
        units = self.scale_to_units(width, height)
        return Vector2(abs(units.x), abs(units.y))

    def pivot_offset(self, width: float, height: float, proportion: tuple[float, float]) -> Vector2:
        """Offset from an object's corner to its pivot, proportion being measured in Tiled's y-down pixels.

        Objects on isometric maps are already positioned by their pivot.
        """
        if self.rotate_for_isometric:
            return Vector2(0, 0)
        px, py = proportion
        return self.scale_to_units(width * px, height * py)

    def sort_order(self, renderorder: Optional[str]) -> SortOrder:
        if self.orientation == Orientation.ISOMETRIC:
            # isometric maps only render correctly top-right first
            return SortOrder.TOP_RIGHT
        if renderorder is None:
            return SortOrder.TOP_LEFT
        sort_order = RENDER_ORDERS.get(renderorder)
        if sort_order is None:
            logger.debug(f"Unknown render order '{renderorder}', using top-left")
            return SortOrder.TOP_LEFT
        return sort_order
