import pytest

from mutsift.error import InputFileError
from mutsift.interval import GenomicInterval, Interval, group_by_contig, load_intervals, position_in


class TestInterval:
    def test___init__error(self):
        with pytest.raises(AttributeError):
            Interval(4, 3)

    def test___contains__(self):
        assert Interval(1, 2) in Interval(1, 7)
        assert not Interval(1, 7) in Interval(1, 2)
        assert 1 in Interval(1, 7)
        assert 0 not in Interval(1, 7)

    def test_len(self):
        assert len(Interval(1, 1)) == 1
        assert len(Interval(5, 14)) == 10

    def test_overlaps(self):
        assert not Interval.overlaps(Interval(1, 4), Interval(5, 7))
        assert Interval.overlaps(Interval(1, 5), Interval(5, 7))

    def test_min_nonoverlapping(self):
        result = Interval.min_nonoverlapping(Interval(10, 20), Interval(1, 5), Interval(4, 8))
        assert result == [Interval(1, 8), Interval(10, 20)]


class TestGenomicInterval:
    def test_parse(self):
        itvl = GenomicInterval.parse('chrM:1,000-1,100')
        assert itvl.contig == 'chrM'
        assert itvl.start == 1000
        assert itvl.end == 1100

    def test_parse_single_position(self):
        itvl = GenomicInterval.parse('chr1:50')
        assert (itvl.start, itvl.end) == (50, 50)

    def test_parse_error(self):
        with pytest.raises(ValueError):
            GenomicInterval.parse('chr1')
        with pytest.raises(ValueError):
            GenomicInterval.parse('chr1:abc')

    def test_equality_includes_contig(self):
        assert GenomicInterval('chr1', 1, 10) != GenomicInterval('chr2', 1, 10)
        assert GenomicInterval('chr1', 1, 10) == GenomicInterval('chr1', 1, 10)


class TestLoadIntervals:
    def test_region_strings(self, tmp_path):
        filename = tmp_path / 'regions.txt'
        filename.write_text('# comment\nchrM:1-100\n\nchrM:200-300\n')
        assert load_intervals(str(filename)) == [
            GenomicInterval('chrM', 1, 100),
            GenomicInterval('chrM', 200, 300),
        ]

    def test_bed_is_converted_to_one_based(self, tmp_path):
        filename = tmp_path / 'regions.bed'
        filename.write_text('chrM\t0\t100\nchr1\t99\t100\n')
        assert load_intervals(str(filename)) == [
            GenomicInterval('chrM', 1, 100),
            GenomicInterval('chr1', 100, 100),
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputFileError):
            load_intervals(str(tmp_path / 'missing.txt'))


class TestGroupByContig:
    def test_merges_overlaps(self):
        grouped = group_by_contig(
            [GenomicInterval('chrM', 50, 100), GenomicInterval('chrM', 1, 60), GenomicInterval('chr1', 5, 6)]
        )
        assert grouped == {'chrM': [Interval(1, 100)], 'chr1': [Interval(5, 6)]}

    def test_position_in(self):
        intervals = [Interval(1, 10), Interval(20, 30)]
        assert position_in(intervals, 1)
        assert position_in(intervals, 25)
        assert not position_in(intervals, 15)
        assert not position_in(intervals, 31)
        assert not position_in([], 1)
