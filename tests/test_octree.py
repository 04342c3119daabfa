import pytest

from semorb.keypoint import KeyPoint
from semorb.octree import ExtractorNode, distribute_oct_tree


def _square(size):
    return ExtractorNode(ul=(0, 0), ur=(size, 0), bl=(0, size), br=(size, size))


def test_divide_children_tile_parent():
    parent = _square(10)
    n1, n2, n3, n4 = parent.divide()
    assert n1.ul == parent.ul
    assert n2.ur == parent.ur
    assert n3.bl == parent.bl
    assert n4.br == parent.br
    assert n1.ur == n2.ul
    assert n1.br == n2.bl == n3.ur == n4.ul
    assert n3.br == n4.bl


def test_divide_assigns_each_quadrant():
    parent = _square(10)
    parent.keys = [KeyPoint(1, 1), KeyPoint(8, 1), KeyPoint(1, 8), KeyPoint(8, 8)]
    children = parent.divide()
    assert [len(c.keys) for c in children] == [1, 1, 1, 1]
    assert all(c.no_more for c in children)
    assert [c.keys[0].pt for c in children] == [(1, 1), (8, 1), (1, 8), (8, 8)]


def test_divide_key_on_split_line_goes_right_and_down():
    parent = _square(10)
    n1, _, _, _ = parent.divide()
    split_x, split_y = n1.ur[0], n1.br[1]
    parent.keys = [KeyPoint(split_x, split_y), KeyPoint(1, 1), KeyPoint(2, 2)]
    c1, c2, c3, c4 = parent.divide()
    assert c4.keys[0].pt == (split_x, split_y)
    assert len(c1.keys) == 2
    assert not c1.no_more
    assert c2.keys == [] and c3.keys == []


def test_distribute_empty():
    assert distribute_oct_tree([], 0, 40, 0, 40, 10) == []


def test_distribute_keeps_spread_points():
    keys = [KeyPoint(5, 5), KeyPoint(35, 5), KeyPoint(5, 35), KeyPoint(35, 35)]
    result = distribute_oct_tree(keys, 0, 40, 0, 40, 10)
    assert sorted(kp.pt for kp in result) == sorted(kp.pt for kp in keys)


def test_distribute_keeps_strongest_duplicate():
    keys = [KeyPoint(10.5, 10.5, response=r) for r in (1.0, 5.0, 3.0)]
    result = distribute_oct_tree(keys, 0, 40, 0, 40, 10)
    assert len(result) == 1
    assert result[0].response == 5.0


def test_distribute_reaches_requested_count():
    keys = [
        KeyPoint(3 * i + 0.5, 3 * j + 0.5, response=float(i * 10 + j))
        for i in range(10)
        for j in range(10)
    ]
    result = distribute_oct_tree(keys, 0, 40, 0, 40, 20)
    assert 20 <= len(result) <= len(keys)
    input_points = {kp.pt for kp in keys}
    assert all(kp.pt in input_points for kp in result)
    assert len({kp.pt for kp in result}) == len(result)


def test_distribute_returns_copies():
    keys = [KeyPoint(5, 5), KeyPoint(35, 35)]
    result = distribute_oct_tree(keys, 0, 40, 0, 40, 10)
    for kp in result:
        kp.x += 100
    assert sorted(kp.pt for kp in keys) == [(5, 5), (35, 35)]


def test_distribute_wide_region_uses_several_columns():
    keys = [KeyPoint(x + 0.5, 5.5) for x in range(0, 120, 10)]
    result = distribute_oct_tree(keys, 0, 120, 0, 30, 100)
    assert sorted(kp.pt for kp in result) == sorted(kp.pt for kp in keys)


def test_distribute_rejects_flat_region():
    with pytest.raises(ValueError):
        distribute_oct_tree([KeyPoint(1, 0)], 0, 40, 5, 5, 10)