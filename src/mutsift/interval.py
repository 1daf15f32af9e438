import re
from typing import Dict, Iterable, List

import pandas as pd

from .error import InputFileError


class Interval:
    """
    integer interval where both the start and end positions are inclusive
    """

    def __init__(self, start: int, end=None):
        """
        Args:
            start: the start of the interval (inclusive)
            end: the end of the interval (inclusive)
        """
        self.start = int(start)
        self.end = int(end) if end is not None else self.start
        if self.start > self.end:
            raise AttributeError('interval start > end is not allowed', self.start, self.end)

    def __getitem__(self, index):
        try:
            index = int(index)
        except ValueError:
            raise IndexError('index input accessor must be an integer', index)
        if index == 0:
            return self.start
        elif index == 1:
            return self.end
        raise IndexError('index input accessor is out of bounds: 1 or 2 only', index)

    def __or__(self, other):  # union
        """the union of two intervals

        Example:
            >>> Interval(1, 10) | Interval(5, 50)
            Interval(1, 50)
        """
        return Interval.union(self, other)

    @classmethod
    def overlaps(cls, first, other) -> bool:
        """
        checks if two intervals have any portion of their given ranges in common

        Example:
            >>> Interval.overlaps(Interval(1, 4), Interval(5, 7))
            False
            >>> Interval.overlaps((1, 10), (10, 11))
            True
        """
        if first[1] < other[0]:
            return False
        elif first[0] > other[1]:
            return False
        return True

    def __len__(self):
        """
        the length of the interval

        Example:
            >>> len(Interval(1, 11))
            11
        """
        return self.end - self.start + 1

    def __lt__(self, other):
        if self[0] < other[0]:
            return True
        elif self[0] == other[0] and self[1] < other[1]:
            return True
        return False

    def __eq__(self, other):
        try:
            return self[0] == other[0] and self[1] == other[1]
        except (TypeError, IndexError):
            return False

    def __hash__(self):
        return hash((self[0], self[1]))

    def __contains__(self, other):
        try:
            if other[0] >= self[0] and other[1] <= self[1]:
                return True
        except TypeError:
            if other >= self[0] and other <= self[1]:
                return True
        return False

    def __repr__(self):
        return '{}({}, {})'.format(self.__class__.__name__, self.start, self.end)

    @classmethod
    def union(cls, *intervals):
        """
        returns the union of the set of input intervals

        Example:
            >>> Interval.union((1, 2), (4, 6), (4, 9), (20, 21))
            Interval(1, 21)
        """
        if len(intervals) < 1:
            raise AttributeError('cannot compute the union of an empty set of intervals')
        return Interval(min([i[0] for i in intervals]), max([i[1] for i in intervals]))

    @classmethod
    def min_nonoverlapping(cls, *intervals) -> List['Interval']:
        """
        for a list of intervals, orders them and merges any overlap (or abutting ends) to return
        a list of non-overlapping intervals

        Example:
            >>> Interval.min_nonoverlapping((1, 10), (7, 8), (6, 14), (17, 20))
            [Interval(1, 14), Interval(17, 20)]
        """
        if len(intervals) == 0:
            return []
        intervals = sorted(list(intervals), key=lambda x: (x[0], x[1]))
        new_intervals = [Interval(intervals[0][0], intervals[0][1])]
        for i in intervals[1:]:
            if Interval.overlaps(new_intervals[-1], i):
                new_intervals[-1] = new_intervals[-1] | i
            else:
                new_intervals.append(Interval(i[0], i[1]))
        return new_intervals


class GenomicInterval(Interval):
    """
    an interval on a named contig
    """

    def __init__(self, contig: str, start: int, end=None):
        Interval.__init__(self, start, end)
        self.contig = contig

    def __repr__(self):
        return '{}({}:{}-{})'.format(self.__class__.__name__, self.contig, self.start, self.end)

    def __str__(self):
        return f'{self.contig}:{self.start}-{self.end}'

    def __eq__(self, other):
        return (
            getattr(other, 'contig', None) == self.contig
            and self.start == other.start
            and self.end == other.end
        )

    def __hash__(self):
        return hash((self.contig, self.start, self.end))

    def __lt__(self, other):
        return (self.contig, self.start, self.end) < (other.contig, other.start, other.end)

    @classmethod
    def parse(cls, interval: str) -> 'GenomicInterval':
        """
        parse a samtools-style region string

        Example:
            >>> GenomicInterval.parse('chrM:100-200')
            GenomicInterval(chrM:100-200)
            >>> GenomicInterval.parse('chr1:1,000-1,010')
            GenomicInterval(chr1:1000-1010)
        """
        match = re.match(r'^(?P<contig>[^:\s]+)(:(?P<start>[\d,]+)(-(?P<end>[\d,]+))?)?$', interval.strip())
        if not match:
            raise ValueError(f'invalid interval string: {interval}')
        if match.group('start') is None:
            raise ValueError(f'interval must have at least a start position: {interval}')
        start = int(match.group('start').replace(',', ''))
        end = match.group('end')
        end = int(end.replace(',', '')) if end is not None else start
        return cls(match.group('contig'), start, end)


def load_intervals(filename: str) -> List[GenomicInterval]:
    """
    read a list of genomic intervals. Accepts either samtools-style region strings (one per line) or
    a BED file (0-based half-open, converted to 1-based inclusive)
    """
    intervals = []
    bed_rows = []
    try:
        with open(filename, 'r') as fh:
            for line in fh:
                line = line.strip()
                if not line or line.startswith('#') or line.startswith('@'):
                    continue
                if '\t' in line:
                    bed_rows.append(line)
                else:
                    intervals.append(GenomicInterval.parse(line))
    except OSError as err:
        raise InputFileError(f'unable to read interval file: {filename}') from err
    if bed_rows:
        df = pd.read_csv(
            filename,
            sep='\t',
            header=None,
            comment='#',
            usecols=[0, 1, 2],
            names=['contig', 'start', 'end'],
            dtype={'contig': str, 'start': int, 'end': int},
        )
        for row in df.itertuples():
            intervals.append(GenomicInterval(row.contig, row.start + 1, row.end))
    return intervals


def group_by_contig(intervals: Iterable[GenomicInterval]) -> Dict[str, List[Interval]]:
    """
    collapse a set of genomic intervals into sorted non-overlapping intervals per contig
    """
    grouped: Dict[str, List] = {}
    for itvl in intervals:
        grouped.setdefault(itvl.contig, []).append(itvl)
    return {contig: Interval.min_nonoverlapping(*itvls) for contig, itvls in grouped.items()}


def position_in(intervals: List[Interval], pos: int) -> bool:
    """
    check if a position falls in any of a sorted list of non-overlapping intervals
    """
    low, high = 0, len(intervals)
    while low < high:
        mid = (low + high) // 2
        if intervals[mid].end < pos:
            low = mid + 1
        else:
            high = mid
    return low < len(intervals) and intervals[low].start <= pos
