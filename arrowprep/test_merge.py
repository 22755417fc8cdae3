"""
Tests for overlap scoring and multi-annotator box merging.
Run with: pytest arrowprep/test_merge.py  (or python -m arrowprep.test_merge)
"""

import pytest

from arrowprep.modules.merge import BoxMerger, box_overlap, find_best_match, intersect_all
from arrowprep.parsers.base import Box


def test_overlap_symmetric():
    """Overlap score does not depend on argument order."""
    a = Box(0, 0, 10, 10)
    b = Box(5, 5, 15, 15)
    c = Box(2, 7, 30, 9)

    assert box_overlap(a, b) == box_overlap(b, a)
    assert box_overlap(a, c) == box_overlap(c, a)
    assert box_overlap(b, c) == box_overlap(c, b)


def test_overlap_identity():
    for box in (Box(0, 0, 10, 10), Box(3, 4, 5, 9), Box(0.5, 0.5, 1.5, 2.5)):
        assert box_overlap(box, box) == 1.0


def test_overlap_disjoint_and_touching():
    """Disjoint or edge-touching boxes score zero."""
    assert box_overlap(Box(0, 0, 10, 10), Box(20, 20, 30, 30)) == 0.0
    assert box_overlap(Box(0, 0, 10, 10), Box(10, 0, 20, 10)) == 0.0


def test_overlap_in_unit_range():
    boxes = [Box(0, 0, 10, 10), Box(5, 5, 15, 15), Box(0, 0, 100, 100), Box(9, 9, 11, 11)]
    for a in boxes:
        for b in boxes:
            assert 0.0 <= box_overlap(a, b) <= 1.0


def test_overlap_value():
    score = box_overlap(Box(0, 0, 10, 10), Box(5, 5, 15, 15))
    assert score == pytest.approx(25 / 175)


def test_find_best_match():
    box = Box(0, 0, 10, 10)
    candidates = [Box(50, 50, 60, 60), Box(5, 5, 15, 15), Box(1, 1, 11, 11)]

    idx, score = find_best_match(box, candidates)

    assert idx == 2
    assert score == pytest.approx(81 / 119)


def test_find_best_match_none():
    assert find_best_match(Box(0, 0, 10, 10), []) == (-1, 0.0)
    assert find_best_match(Box(0, 0, 10, 10), [Box(20, 20, 30, 30)]) == (-1, 0.0)


def test_intersect_all():
    result = intersect_all([Box(0, 0, 10, 10), Box(5, 2, 15, 12), Box(1, 3, 9, 20)])
    assert result == Box(5, 3, 9, 10)


def test_merge_two_runs_example():
    """Two runs with one weakly overlapping pair give their intersection."""
    merger = BoxMerger(threshold=0.1)
    runs = [[Box(0, 0, 10, 10)], [Box(5, 5, 15, 15)]]

    assert merger.merge(runs) == [Box(5, 5, 10, 10)]


def test_merge_below_threshold():
    merger = BoxMerger(threshold=0.3)
    runs = [[Box(0, 0, 10, 10)], [Box(5, 5, 15, 15)]]

    assert merger.merge(runs) == []


def test_merge_threshold_is_inclusive():
    merger = BoxMerger(threshold=0.5)
    runs = [[Box(0, 0, 10, 10)], [Box(0, 0, 10, 5)]]

    assert merger.merge(runs) == [Box(0, 0, 10, 5)]


def test_merge_three_runs_two_agree():
    """The unmatched third-run box is discarded, not averaged in."""
    merger = BoxMerger(threshold=0.3)
    runs = [
        [Box(0, 0, 10, 10)],
        [Box(1, 1, 11, 11)],
        [Box(50, 50, 60, 60)],
    ]

    assert merger.merge(runs) == [Box(1, 1, 10, 10)]


def test_merge_three_runs_all_agree():
    merger = BoxMerger(threshold=0.3)
    runs = [
        [Box(0, 0, 10, 10)],
        [Box(1, 0, 11, 10)],
        [Box(0, 2, 10, 12)],
    ]

    assert merger.merge(runs) == [Box(1, 2, 10, 10)]


def test_merge_later_runs_agree_when_first_is_empty():
    merger = BoxMerger(threshold=0.3)
    runs = [[], [Box(0, 0, 10, 10)], [Box(1, 1, 11, 11)]]

    assert merger.merge(runs) == [Box(1, 1, 10, 10)]


def test_merge_single_run_is_untrusted():
    merger = BoxMerger(threshold=0.3)

    assert merger.merge([[Box(0, 0, 10, 10), Box(20, 20, 30, 30)]]) == []
    assert merger.merge([]) == []
    assert merger.merge([[], []]) == []


def test_merge_consumes_matched_boxes():
    """A box that agreed once cannot back a second consensus box."""
    merger = BoxMerger(threshold=0.3)
    runs = [
        [Box(0, 0, 10, 10), Box(0, 0, 10, 10)],
        [Box(0, 0, 10, 10)],
    ]

    assert merger.merge(runs) == [Box(0, 0, 10, 10)]


def test_merge_several_arrows():
    merger = BoxMerger(threshold=0.3)
    runs = [
        [Box(0, 0, 10, 10), Box(100, 100, 120, 120)],
        [Box(101, 99, 121, 119), Box(1, 1, 11, 11)],
    ]

    assert merger.merge(runs) == [Box(1, 1, 10, 10), Box(101, 100, 120, 119)]


def test_merge_leaves_input_untouched():
    merger = BoxMerger(threshold=0.3)
    runs = [[Box(0, 0, 10, 10)], [Box(1, 1, 11, 11)]]

    merger.merge(runs)

    assert runs == [[Box(0, 0, 10, 10)], [Box(1, 1, 11, 11)]]


@pytest.mark.parametrize("threshold", [0, -0.1, 1.5])
def test_merger_rejects_bad_threshold(threshold):
    with pytest.raises(ValueError):
        BoxMerger(threshold=threshold)


def _cases(test):
    """Keyword arguments for each parametrized case of a test."""
    for mark in getattr(test, "pytestmark", []):
        if mark.name == "parametrize":
            argname, values = mark.args
            return [{argname: value} for value in values]
    return [{}]


def test_cases_expand_parametrized_tests():
    assert _cases(test_merger_rejects_bad_threshold) == [
        {"threshold": 0}, {"threshold": -0.1}, {"threshold": 1.5},
    ]
    assert _cases(test_overlap_identity) == [{}]


def main():
    """Run every test in this module without pytest."""
    tests = [
        obj for name, obj in list(globals().items())
        if name.startswith("test_") and callable(obj)
    ]

    all_passed = True
    for test in tests:
        for kwargs in _cases(test):
            try:
                test(**kwargs)
                status = "PASS"
            except (AssertionError, pytest.fail.Exception):
                status = "FAIL"
                all_passed = False
            label = test.__name__ + (f"{list(kwargs.values())}" if kwargs else "")
            print(f"  {label}: {status}")

    print()
    print("All tests PASSED!" if all_passed else "Some tests FAILED!")
    return 0 if all_passed else 1


if __name__ == "__main__":
    exit(main())
