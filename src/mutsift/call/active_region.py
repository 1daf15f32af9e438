"""
scans per-position read evidence to find the regions worth assembling
"""
import bisect
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

import numpy as np

from ..bam.read import AlignedRead
from ..constants import CIGAR, NULL_BASE
from ..interval import Interval
from ..util import logger
from ..variant import ForcedAllele

MIN_SOFT_CLIP_EVIDENCE = 3
"""soft clips shorter than this are not counted as evidence of variation"""


@dataclass
class ActiveRegion:
    """
    Attributes:
        contig: the reference contig
        interval: the span calls are reported for
        padded: the interval plus flanking context used for assembly
        reads: the reads overlapping the padded interval
        reference: the reference bases of the padded interval
        force_active: the region contains a force-called allele
        is_active: False for the stretches between active regions (reference confidence only)
        forced_alleles: the force-called alleles starting within the interval
        index: the position of the region in the output order
    """

    contig: str
    interval: Interval
    padded: Interval
    reads: List[AlignedRead] = field(default_factory=list)
    reference: str = ''
    force_active: bool = False
    is_active: bool = True
    forced_alleles: List[ForcedAllele] = field(default_factory=list)
    index: int = 0

    def __str__(self):
        return f'{self.contig}:{self.interval.start}-{self.interval.end}'

    def reference_base(self, pos: int) -> str:
        return self.reference[pos - self.padded.start]


@dataclass
class PileupCounts:
    """
    per-position summary of the reads over an interval

    Attributes:
        start: the reference position of the first element
        depth: number of reads covering each position
        alt: number of reads showing evidence of a difference from the reference at each position
        error: sum of the base error probabilities of the covering reads
    """

    start: int
    depth: np.ndarray
    alt: np.ndarray
    error: np.ndarray

    def mean_error(self) -> np.ndarray:
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(self.depth > 0, self.error / np.maximum(self.depth, 1), 1e-3)


def phred_to_error(qual) -> np.ndarray:
    """
    Example:
        >>> float(phred_to_error(30))
        0.001
    """
    return np.power(10.0, -np.asarray(qual, dtype=float) / 10)


def pileup_counts(
    reads: Sequence[AlignedRead],
    interval: Interval,
    reference: str,
    reference_start: int,
    min_base_quality: int = 0,
) -> PileupCounts:
    """
    summarize the mismatches, indels and soft clips of a set of reads over an interval

    Args:
        reads: the reads (all on the same contig)
        interval: the positions to summarize
        reference: reference bases starting at reference_start
        reference_start: the position of the first base of reference
        min_base_quality: mismatches on bases below this quality are not counted
    """
    length = len(interval)
    depth = np.zeros(length, dtype=int)
    alt = np.zeros(length, dtype=int)
    error = np.zeros(length, dtype=float)
    offset = interval.start

    def mark(pos):
        if interval.start <= pos <= interval.end:
            alt[pos - offset] += 1

    for read in reads:
        qpos = 0
        rpos = read.start
        for index, (state, freq) in enumerate(read.cigar):
            if state in {CIGAR.M, CIGAR.EQ, CIGAR.X}:
                for i in range(freq):
                    pos = rpos + i
                    if interval.start <= pos <= interval.end:
                        base = read.sequence[qpos + i]
                        qual = read.qualities[qpos + i]
                        depth[pos - offset] += 1
                        error[pos - offset] += 10 ** (-qual / 10)
                        ref_base = reference[pos - reference_start]
                        if base != ref_base and base != NULL_BASE and qual >= min_base_quality:
                            alt[pos - offset] += 1
                qpos += freq
                rpos += freq
            elif state == CIGAR.I:
                mark(rpos - 1)
                qpos += freq
            elif state in {CIGAR.D, CIGAR.N}:
                mark(rpos - 1)
                for i in range(freq):
                    pos = rpos + i
                    if interval.start <= pos <= interval.end:
                        depth[pos - offset] += 1
                        error[pos - offset] += 1e-3
                rpos += freq
            elif state == CIGAR.S:
                if freq >= MIN_SOFT_CLIP_EVIDENCE:
                    mark(rpos if index == 0 else rpos - 1)
                qpos += freq
    return PileupCounts(interval.start, depth, np.minimum(alt, depth), error)


def log10_odds_of_variation(depth, alt, error, allele_fraction=None) -> np.ndarray:
    """
    log10 odds that a fraction of the reads at a position carry a non-reference allele versus none of them

    Args:
        depth: number of reads
        alt: number of non-reference observations
        error: per-base error probability
        allele_fraction: fraction to evaluate the alternate hypothesis at. Defaults to the
            maximum likelihood estimate (alt / depth)
    """
    depth = np.asarray(depth, dtype=float)
    alt = np.asarray(alt, dtype=float)
    error = np.clip(np.asarray(error, dtype=float), 1e-6, 0.75)
    if allele_fraction is None:
        with np.errstate(divide='ignore', invalid='ignore'):
            fraction = np.where(depth > 0, alt / np.maximum(depth, 1), 0)
    else:
        fraction = np.full(depth.shape, allele_fraction, dtype=float)
    alt_given_ref = error / 3
    ref_given_ref = 1 - error
    alt_lik = fraction * (1 - error) + (1 - fraction) * alt_given_ref
    ref_lik = fraction * alt_given_ref + (1 - fraction) * ref_given_ref
    return alt * np.log10(alt_lik / alt_given_ref) + (depth - alt) * np.log10(ref_lik / ref_given_ref)


class ActiveRegionDetector:
    """
    finds the active regions of an interval. Region boundaries depend only on the reads, the
    force-called alleles and the configuration
    """

    def __init__(
        self,
        initial_lod: float = 2.0,
        min_base_quality: int = 10,
        extension: int = 25,
        padding: int = 100,
        max_region_size: int = 300,
        emit_inactive: bool = False,
    ):
        """
        Args:
            initial_lod: minimum log10 odds of variation for a position to be active
            min_base_quality: minimum base quality for a mismatch to count as evidence
            extension: bases added on either side of an active position
            padding: bases of context added to either side of a region for assembly
            max_region_size: regions longer than this are split
            emit_inactive: also produce the (inactive) regions between active regions so that
                the whole interval is tiled
        """
        if padding < 1:
            raise ValueError('region padding must be at least 1', padding)
        self.initial_lod = initial_lod
        self.min_base_quality = min_base_quality
        self.extension = extension
        self.padding = padding
        self.max_region_size = max_region_size
        self.emit_inactive = emit_inactive

    def activity(self, reads: Sequence[AlignedRead], interval: Interval, reference: str, reference_start: int):
        counts = pileup_counts(reads, interval, reference, reference_start, self.min_base_quality)
        lod = log10_odds_of_variation(counts.depth, counts.alt, counts.mean_error())
        active = (counts.alt > 0) & (lod >= self.initial_lod)
        return active, lod

    def _split(self, region: Interval, lod: np.ndarray, active: np.ndarray, offset: int) -> List[Interval]:
        """
        split a region longer than the maximum size, preferring to cut at the least active positions
        """
        result = []
        start = region.start
        while region.end - start + 1 > self.max_region_size:
            low = start + self.max_region_size // 2
            high = start + self.max_region_size - 1
            candidates = [
                pos
                for pos in range(low, high + 1)
                if not active[pos - offset] and not active[min(pos + 1, len(active) + offset - 1) - offset]
            ]
            if candidates:
                cut = min(candidates, key=lambda pos: (lod[pos - offset], pos))
            else:
                cut = high
            result.append(Interval(start, cut))
            start = cut + 1
        result.append(Interval(start, region.end))
        return result

    def detect(
        self,
        contig: str,
        interval: Interval,
        reads: Sequence[AlignedRead],
        reference: str,
        contig_length: Optional[int] = None,
        forced_alleles: Sequence[ForcedAllele] = (),
    ) -> Iterator[ActiveRegion]:
        """
        lazily produce the active regions of an interval in coordinate order

        Args:
            contig: the contig of the interval
            interval: the interval to scan
            reads: the reads overlapping the interval, sorted by start
            reference: the full contig sequence
            contig_length: length of the contig (defaults to the length of the reference)
            forced_alleles: alleles which must be genotyped. Their positions are always active
        """
        contig_length = contig_length or len(reference)
        interval = Interval(max(1, interval.start), min(contig_length, interval.end))
        active, lod = self.activity(reads, interval, reference, 1)
        forced = [a for a in forced_alleles if a.contig == contig and interval.start <= a.pos <= interval.end]
        for allele in forced:
            for pos in range(allele.pos, min(allele.end, interval.end) + 1):
                active[pos - interval.start] = True

        windows = []
        for index in np.flatnonzero(active):
            pos = interval.start + int(index)
            windows.append((max(interval.start, pos - self.extension), min(interval.end, pos + self.extension)))
        cores = []
        for window in Interval.min_nonoverlapping(*windows):
            cores.extend(self._split(window, lod, active, interval.start))
        logger.debug(f'{len(cores)} active regions in {contig}:{interval.start}-{interval.end}')

        tiles = []
        last_end = interval.start - 1
        for core in cores:
            if self.emit_inactive and core.start > last_end + 1:
                for gap in self._split(Interval(last_end + 1, core.start - 1), lod, active, interval.start):
                    tiles.append((gap, False))
            tiles.append((core, True))
            last_end = core.end
        if self.emit_inactive and last_end < interval.end:
            for gap in self._split(Interval(last_end + 1, interval.end), lod, active, interval.start):
                tiles.append((gap, False))

        starts = [read.start for read in reads]
        max_span = max([read.end - read.start + 1 for read in reads], default=0)
        for core, is_active in tiles:
            padded = Interval(max(1, core.start - self.padding), min(contig_length, core.end + self.padding))
            if not is_active:
                padded = core
            first = bisect.bisect_left(starts, padded.start - max_span)
            last = bisect.bisect_right(starts, padded.end)
            region_reads = [r for r in reads[first:last] if r.end >= padded.start]
            region_forced = [a for a in forced if core.start <= a.pos <= core.end]
            yield ActiveRegion(
                contig=contig,
                interval=core,
                padded=padded,
                reads=region_reads,
                reference=reference[padded.start - 1 : padded.end],
                force_active=bool(region_forced),
                is_active=is_active,
                forced_alleles=region_forced,
            )
