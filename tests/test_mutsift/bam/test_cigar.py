import pytest

from mutsift.bam.cigar import join, reference_length
from mutsift.constants import CIGAR

from ..mock import convert_string_to_cigar


class TestJoin:
    def test_merges_adjacent(self):
        assert join([(CIGAR.EQ, 5)], [(CIGAR.EQ, 2), (CIGAR.X, 1)]) == [(CIGAR.EQ, 7), (CIGAR.X, 1)]

    def test_drops_empty(self):
        assert join([(CIGAR.M, 3), (CIGAR.I, 0), (CIGAR.M, 2)]) == [(CIGAR.M, 5)]

    def test_no_input(self):
        assert join() == []


@pytest.mark.parametrize(
    'cigar_string,ref_length',
    [
        ['50M', 50],
        ['5S40M5S', 40],
        ['10M2I10M', 20],
        ['10M3D10M', 23],
        ['4H10=1X10=', 21],
        ['10M100N10M', 120],
    ],
)
def test_reference_length(cigar_string, ref_length):
    assert reference_length(convert_string_to_cigar(cigar_string)) == ref_length
