"""
Barnes-Hut quadtree for 2-D gravitational force calculation.

The tree partitions a fixed world rectangle into quadrants and keeps, for each
node, the total mass and center of mass of every particle below it. Force on a
particle is then computed by walking the tree and replacing distant nodes by a
single point mass, which brings the cost per step from O(N^2) down to roughly
O(N log N).

Nodes live in an arena: parallel lists indexed by node id, with the four
children of an internal node stored next to each other and referenced by the
id of the first one. Node 0 is the root. Every walk uses an explicit stack, so
tree depth never touches the Python recursion limit.

Node states:
    empty:    no particles, no children
    leaf:     one particle, no children
    internal: four children, no particles of its own
    bucket:   several particles, no children (only at MAX_DEPTH, where
              coincident points can no longer be separated by splitting)

Constants:
    MAX_DEPTH: Depth at which leaves stop splitting and become buckets
    NO_CHILD: Marker for nodes without children

Example:
    >>> from particle_sim2d.physics.bounding_box import BoundingBox
    >>> from particle_sim2d.physics.particles import ParticleStore
    >>> store = ParticleStore.from_arrays([1.0, 3.0], [1.0, 1.0], [0.0, 0.0], [0.0, 0.0], [1.0, 3.0])
    >>> tree = build_quadtree(store, BoundingBox(0.0, 0.0, 4.0, 4.0))
    >>> tree.root_mass, tree.root_center_of_mass
    (4.0, (2.5, 1.0))
"""

from __future__ import annotations

import logging
import math
from typing import Iterator

from particle_sim2d.physics.bounding_box import BoundingBox
from particle_sim2d.physics.forces import compute_force_pair
from particle_sim2d.physics.particles import ParticleStore


logger = logging.getLogger(__name__)

MAX_DEPTH = 32
NO_CHILD = -1

DEFAULT_G = 1.0
DEFAULT_SOFTENING = 0.01
DEFAULT_THETA = 0.5


class QuadTree:
    """
    Arena-backed quadtree over a fixed world rectangle.

    Attributes:
        bounds: World rectangle; particles outside it are never inserted
        g: Gravitational constant
        softening: Softening length (added in quadrature to distances)
        theta: Multipole acceptance threshold (0 = always open nodes)
        softened_direction: Normalize force directions by the softened
            distance instead of the plain Euclidean one
        max_depth: Depth at which leaves turn into buckets
        excluded: Number of insert() calls rejected for lying outside bounds
    """

    def __init__(
        self,
        bounds: BoundingBox,
        *,
        g: float = DEFAULT_G,
        softening: float = DEFAULT_SOFTENING,
        theta: float = DEFAULT_THETA,
        softened_direction: bool = False,
        max_depth: int = MAX_DEPTH,
    ) -> None:
        self.bounds = bounds
        self.g = float(g)
        self.softening = float(softening)
        self.eps2 = self.softening * self.softening
        self.theta = float(theta)
        self.softened_direction = bool(softened_direction)
        self.max_depth = max(0, int(max_depth))
        self.excluded = 0

        # Node arena
        self._left: list[float] = []
        self._top: list[float] = []
        self._width: list[float] = []
        self._height: list[float] = []
        self._depth: list[int] = []
        self._child: list[int] = []
        self._slots: list[list[int]] = []
        self._mass: list[float] = []
        self._com_x: list[float] = []
        self._com_y: list[float] = []

        # Position and mass of each inserted slot as seen at insertion time
        self._points: dict[int, tuple[float, float, float]] = {}

        self._new_node(bounds.left, bounds.top, bounds.width, bounds.height, 0)

    def _new_node(self, left: float, top: float, width: float, height: float, depth: int) -> int:
        self._left.append(left)
        self._top.append(top)
        self._width.append(width)
        self._height.append(height)
        self._depth.append(depth)
        self._child.append(NO_CHILD)
        self._slots.append([])
        self._mass.append(0.0)
        # An empty node reports its geometric center
        self._com_x.append(left + width * 0.5)
        self._com_y.append(top + height * 0.5)
        return len(self._mass) - 1

    def _subdivide(self, node: int) -> None:
        depth = self._depth[node] + 1
        first = self.node_count
        for q in self.node_box(node).quadrants():
            self._new_node(q.left, q.top, q.width, q.height, depth)
        self._child[node] = first

    def _child_for(self, node: int, x: float, y: float) -> int:
        quadrant = 0
        if x >= self._left[node] + self._width[node] * 0.5:
            quadrant |= 1
        if y >= self._top[node] + self._height[node] * 0.5:
            quadrant |= 2
        return self._child[node] + quadrant

    def _absorb(self, node: int, x: float, y: float, m: float) -> None:
        total = self._mass[node] + m
        if total > 0.0:
            self._com_x[node] = (self._com_x[node] * self._mass[node] + x * m) / total
            self._com_y[node] = (self._com_y[node] * self._mass[node] + y * m) / total
            self._mass[node] = total

    def _occupy(self, node: int, slot: int, x: float, y: float, m: float) -> None:
        self._slots[node].append(slot)
        self._mass[node] = m
        self._com_x[node] = x
        self._com_y[node] = y

    def insert(self, store: ParticleStore, slot: int) -> bool:
        """
        Insert the particle at ``slot``. Returns False if it lies outside the world.

        Aggregates are folded in on the way down, so every node on the path
        ends up with the mass-weighted combination of its previous aggregate
        and the new particle.
        """
        x, y = store.get_position(slot)
        if not self.bounds.contains(x, y):
            self.excluded += 1
            return False
        m = float(store.mass[slot])
        self._points[slot] = (x, y, m)

        node = 0
        while True:
            if self._child[node] == NO_CHILD:
                occupants = self._slots[node]
                if not occupants:
                    self._occupy(node, slot, x, y, m)
                    return True
                if self._depth[node] >= self.max_depth:
                    occupants.append(slot)
                    self._absorb(node, x, y, m)
                    return True
                # Occupied leaf: push the resident particle one level down
                self._subdivide(node)
                resident = occupants[0]
                self._slots[node] = []
                rx, ry, rm = self._points[resident]
                self._occupy(self._child_for(node, rx, ry), resident, rx, ry, rm)

            self._absorb(node, x, y, m)
            node = self._child_for(node, x, y)

    def calculate_force(self, store: ParticleStore, slot: int) -> tuple[float, float]:
        """
        Accumulate the Barnes-Hut force on ``slot`` into the store.

        Leaves contribute exact pairwise forces (the particle itself is
        skipped). An internal node at softened distance d from the particle
        is treated as one body when ``width / d < theta``, otherwise its
        children are visited. A node whose box holds the particle is always
        opened, so its own mass never acts on it whatever theta is.

        A slot that was not inserted (outside the world) receives nothing
        and its accumulator is left untouched.

        Returns:
            The force added to the particle's accumulator.
        """
        if slot not in self._points:
            return 0.0, 0.0
        px, py = store.get_position(slot)
        mi = float(store.mass[slot])
        g = self.g
        eps2 = self.eps2
        theta = self.theta
        softened = self.softened_direction
        points = self._points
        child = self._child
        fx = fy = 0.0

        stack = [0]
        while stack:
            node = stack.pop()
            first = child[node]
            if first == NO_CHILD:
                for other in self._slots[node]:
                    if other == slot:
                        continue
                    ox, oy, om = points[other]
                    dfx, dfy = compute_force_pair(ox - px, oy - py, mi, om, g, eps2, softened)
                    fx += dfx
                    fy += dfy
                continue

            left = self._left[node]
            top = self._top[node]
            width = self._width[node]
            holds_self = left <= px < left + width and top <= py < top + self._height[node]
            dx = self._com_x[node] - px
            dy = self._com_y[node] - py
            d = math.sqrt(dx * dx + dy * dy + eps2)
            if not holds_self and d > 0.0 and (width / d) < theta:
                dfx, dfy = compute_force_pair(dx, dy, mi, self._mass[node], g, eps2, softened)
                fx += dfx
                fy += dfy
            else:
                stack.extend((first, first + 1, first + 2, first + 3))

        store.accumulate_force(slot, (fx, fy))
        return fx, fy

    def query(self, area: BoundingBox, store: ParticleStore) -> list[int]:
        """Return the slots whose current position lies inside ``area``."""
        found: list[int] = []
        stack = [0]
        while stack:
            node = stack.pop()
            if not area.intersects(self.node_box(node)):
                continue
            for slot in self._slots[node]:
                x, y = store.get_position(slot)
                if area.contains(x, y):
                    found.append(slot)
            first = self._child[node]
            if first != NO_CHILD:
                stack.extend((first, first + 1, first + 2, first + 3))
        return found

    @property
    def node_count(self) -> int:
        return len(self._mass)

    @property
    def particle_count(self) -> int:
        return len(self._points)

    @property
    def root_mass(self) -> float:
        return self._mass[0]

    @property
    def root_center_of_mass(self) -> tuple[float, float]:
        return self._com_x[0], self._com_y[0]

    def node_box(self, node: int) -> BoundingBox:
        return BoundingBox(self._left[node], self._top[node], self._width[node], self._height[node])

    def node_boxes(self) -> Iterator[BoundingBox]:
        """Yield every node box, root first (for debug overlays)."""
        for node in range(self.node_count):
            yield self.node_box(node)

    def children(self, node: int) -> tuple[int, int, int, int] | None:
        first = self._child[node]
        if first == NO_CHILD:
            return None
        return first, first + 1, first + 2, first + 3

    def node_slots(self, node: int) -> tuple[int, ...]:
        return tuple(self._slots[node])

    def node_mass(self, node: int) -> float:
        return self._mass[node]

    def node_center_of_mass(self, node: int) -> tuple[float, float]:
        return self._com_x[node], self._com_y[node]

    def depth(self) -> int:
        """Depth of the deepest node (0 for a tree that never split)."""
        return max(self._depth)


def build_quadtree(
    store: ParticleStore,
    bounds: BoundingBox,
    **kwargs,
) -> QuadTree:
    """Create a tree over ``bounds`` and insert every slot of ``store`` in order."""
    tree = QuadTree(bounds, **kwargs)
    for slot in range(store.count):
        tree.insert(store, slot)
    if tree.excluded:
        logger.debug("[tree] %d of %d particles outside world bounds", tree.excluded, store.count)
    return tree
