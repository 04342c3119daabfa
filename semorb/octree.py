"""Quadtree distribution of keypoints over an image region."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field, replace

from semorb.keypoint import KeyPoint

Point = tuple[int, int]


@dataclass(eq=False)
class ExtractorNode:
    """A rectangular cell of the quadtree and the keypoints inside it."""

    ul: Point
    ur: Point
    bl: Point
    br: Point
    keys: list[KeyPoint] = field(default_factory=list)
    no_more: bool = False

    def divide(self) -> tuple[ExtractorNode, ExtractorNode, ExtractorNode, ExtractorNode]:
        """Split the cell into four quadrants and share the keypoints out."""
        half_x = math.ceil((self.ur[0] - self.ul[0]) / 2)
        half_y = math.ceil((self.br[1] - self.ul[1]) / 2)
        ux, uy = self.ul

        n1 = ExtractorNode(
            ul=self.ul,
            ur=(ux + half_x, uy),
            bl=(ux, uy + half_y),
            br=(ux + half_x, uy + half_y),
        )
        n2 = ExtractorNode(ul=n1.ur, ur=self.ur, bl=n1.br, br=(self.ur[0], uy + half_y))
        n3 = ExtractorNode(ul=n1.bl, ur=n1.br, bl=self.bl, br=(n1.br[0], self.bl[1]))
        n4 = ExtractorNode(ul=n3.ur, ur=n2.br, bl=n3.br, br=self.br)

        split_x, split_y = n1.ur[0], n1.br[1]
        for kp in self.keys:
            if kp.x < split_x:
                (n1 if kp.y < split_y else n3).keys.append(kp)
            elif kp.y < split_y:
                n2.keys.append(kp)
            else:
                n4.keys.append(kp)

        children = (n1, n2, n3, n4)
        for child in children:
            if len(child.keys) == 1:
                child.no_more = True
        return children


def distribute_oct_tree(
    keys: list[KeyPoint], min_x: int, max_x: int, min_y: int, max_y: int, n: int
) -> list[KeyPoint]:
    """Spread keypoints evenly by quadtree subdivision, keeping about ``n``.

    Keypoint coordinates are relative to (min_x, min_y). Each final cell
    contributes its keypoint with the strongest response.
    """
    width = max_x - min_x
    height = max_y - min_y
    if width <= 0 or height <= 0:
        raise ValueError("the region must have a positive width and height")

    n_ini = max(1, math.floor(width / height + 0.5))
    h_x = width / n_ini

    initial = [
        ExtractorNode(
            ul=(int(h_x * i), 0),
            ur=(int(h_x * (i + 1)), 0),
            bl=(int(h_x * i), height),
            br=(int(h_x * (i + 1)), height),
        )
        for i in range(n_ini)
    ]
    for kp in keys:
        index = min(max(int(kp.x / h_x), 0), n_ini - 1)
        initial[index].keys.append(kp)

    nodes: deque[ExtractorNode] = deque()
    for node in initial:
        if node.keys:
            node.no_more = len(node.keys) == 1
            nodes.append(node)

    finished = False
    while not finished:
        prev_size = len(nodes)
        pushed: list[ExtractorNode] = []
        kept: list[ExtractorNode] = []
        expandable: list[ExtractorNode] = []

        for node in nodes:
            if node.no_more:
                kept.append(node)
                continue
            for child in node.divide():
                if child.keys:
                    pushed.append(child)
                    if len(child.keys) > 1:
                        expandable.append(child)

        nodes = deque(reversed(pushed))
        nodes.extend(kept)

        if len(nodes) >= n or len(nodes) == prev_size:
            finished = True
        elif len(nodes) + len(expandable) * 3 > n:
            while not finished:
                prev_size = len(nodes)
                previous = sorted(expandable, key=lambda nd: len(nd.keys))
                expandable = []
                for node in reversed(previous):
                    for child in node.divide():
                        if child.keys:
                            nodes.appendleft(child)
                            if len(child.keys) > 1:
                                expandable.append(child)
                    nodes.remove(node)
                    if len(nodes) >= n:
                        break
                if len(nodes) >= n or len(nodes) == prev_size:
                    finished = True

    return [replace(max(node.keys, key=lambda kp: kp.response)) for node in nodes]