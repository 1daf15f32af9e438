import pytest

from mutsift.bam.read import AlignedRead
from mutsift.constants import READ_ORIENTATION

from ..mock import convert_cigar_to_string, make_read

SEQUENCE = 'TTACGTAGGCATGCAT'


@pytest.fixture
def gapped_read():
    # 2 soft clipped bases, an insertion after position 14 and a deletion at position 18
    return make_read(10, SEQUENCE, cigar='2S5M2I3M1D4M')


class TestAlignedPairs:
    def test_soft_clipping(self):
        read = make_read(10, 'ACGT', cigar='2S2M')
        assert read.aligned_pairs() == [(0, None), (1, None), (2, 10), (3, 11)]

    def test_end(self, gapped_read):
        assert gapped_read.end == 22


class TestQueryPosition:
    def test_aligned(self, gapped_read):
        assert gapped_read.query_position(10) == 2
        assert gapped_read.query_position(15) == 9
        assert gapped_read.query_position(19) == 12

    def test_deleted(self, gapped_read):
        assert gapped_read.query_position(18) is None

    def test_outside(self, gapped_read):
        assert gapped_read.query_position(9) is None
        assert gapped_read.query_position(23) is None


class TestClipTo:
    def test_internal_window(self, gapped_read):
        clipped = gapped_read.clip_to(12, 20)
        assert clipped.start == 12
        assert clipped.end == 20
        assert convert_cigar_to_string(clipped.cigar) == '3M2I3M1D2M'
        assert clipped.sequence == SEQUENCE[4:14]
        assert len(clipped.qualities) == len(clipped.sequence)

    def test_trailing_deletion_removed(self, gapped_read):
        clipped = gapped_read.clip_to(12, 18)
        assert convert_cigar_to_string(clipped.cigar) == '3M2I3M'
        assert clipped.end == 17

    def test_no_overlap(self, gapped_read):
        assert gapped_read.clip_to(100, 200) is None

    def test_low_quality_bases_masked(self):
        read = AlignedRead('r', 'tumor', 'chrM', 1, ((0, 4),), 'ACGT', (30, 5, 30, 30))
        assert read.clip_to(1, 4, min_base_quality=10).sequence == 'ANGT'

    def test_clipping_is_tracked(self, gapped_read):
        clipped = gapped_read.clip_to(12, 20)
        assert clipped.clip_offset == 4
        assert clipped.full_length == len(SEQUENCE)
        assert clipped.clip_to(15, 20).clip_offset == 9


class TestDistanceFromEnd:
    def test_unclipped(self, gapped_read):
        assert gapped_read.distance_from_end(10) == 2
        assert gapped_read.distance_from_end(22) == 0

    def test_measured_against_full_read(self, gapped_read):
        clipped = gapped_read.clip_to(12, 20)
        assert clipped.distance_from_end(12) == gapped_read.distance_from_end(12) == 4

    def test_deleted(self, gapped_read):
        assert gapped_read.distance_from_end(18) is None


class TestOrientation:
    @pytest.mark.parametrize(
        'is_read1,is_reverse,expected',
        [
            [True, False, READ_ORIENTATION.F1R2],
            [False, True, READ_ORIENTATION.F1R2],
            [True, True, READ_ORIENTATION.F2R1],
            [False, False, READ_ORIENTATION.F2R1],
        ],
    )
    def test_orientation(self, is_read1, is_reverse, expected):
        read = make_read(1, 'ACGT', is_read1=is_read1, is_reverse=is_reverse)
        assert read.orientation == expected
        assert read.strand == ('-' if is_reverse else '+')
