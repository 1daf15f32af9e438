"""
reference confidence (gvcf style) output: runs of non-variant positions are banded by their odds of
carrying a non-reference allele and merged into blocks
"""
import bisect
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..bam.read import AlignedRead
from ..constants import (
    FORMAT,
    INFO,
    NON_REF_ALLELE,
    PER_ALLELE_FORMAT,
    PER_ALLELE_INFO,
    PER_ALT_FORMAT,
    PER_ALT_INFO,
    MutsiftNamespace,
)
from ..interval import Interval
from ..variant import AlleleCall
from .active_region import log10_odds_of_variation, pileup_counts


class BLOCK_STATE(MutsiftNamespace):
    """
    the state of a position when building reference confidence records
    """

    NO_CALL: str = 'no_call'
    VARIANT: str = 'variant'
    REF_BLOCK: str = 'ref_block'


@dataclass
class _Block:
    state: Tuple
    start: int
    end: int
    min_depth: Dict[str, int]
    min_lod: float


def band_index(lod: float, bands: Sequence[float]) -> int:
    """
    the number of band thresholds at or below a log odds value

    Example:
        >>> band_index(-1.2, [-2.5, -2.0, -1.5, -1.0])
        3
    """
    return bisect.bisect_right(list(bands), lod)


def append_non_ref(call: AlleleCall, non_ref_lod: float) -> AlleleCall:
    """
    add the symbolic non-reference allele to a variant record, extending every per-allele annotation
    """
    call.alts = list(call.alts) + [NON_REF_ALLELE]
    for key, value in list(call.info.items()):
        if isinstance(value, list) and key in PER_ALT_INFO | PER_ALLELE_INFO:
            call.info[key] = value + [non_ref_lod if key == INFO.TLOD else 0]
    for data in call.samples.values():
        for key, value in list(data.items()):
            if isinstance(value, list) and key in PER_ALT_FORMAT | PER_ALLELE_FORMAT:
                data[key] = value + [0.0 if key == FORMAT.AF else 0]
    return call


class ReferenceConfidenceModel:
    """
    produces the reference blocks and <NON_REF> annotations of an active region

    Every position of the region belongs to exactly one state: no-call (no reads), variant (covered by a
    call) or reference block (banded by the non-reference log odds). Adjacent positions in the same state
    (and band) are merged into a single record
    """

    def __init__(
        self,
        tumor_samples: Sequence[str],
        normal_samples: Sequence[str] = (),
        lod_bands: Sequence[float] = (-2.5, -2.0, -1.5, -1.0, -0.5, 0.0, 0.5, 1.0),
        min_allele_fraction: float = 0,
        min_base_quality: int = 10,
    ):
        self.tumor_samples = list(tumor_samples)
        self.normal_samples = list(normal_samples)
        self.lod_bands = sorted(lod_bands)
        self.min_allele_fraction = min_allele_fraction
        self.min_base_quality = min_base_quality

    @property
    def allele_fraction(self) -> Optional[float]:
        return self.min_allele_fraction if self.min_allele_fraction > 0 else None

    def position_evidence(
        self, reads: Sequence[AlignedRead], interval: Interval, reference: str, reference_start: int
    ) -> Tuple[Dict[str, np.ndarray], np.ndarray, np.ndarray]:
        """
        Returns:
            the depth of each sample, the pooled tumor depth and the pooled tumor non-reference log odds at each position
        """
        depths = {}
        tumor_depth = np.zeros(len(interval), dtype=int)
        tumor_alt = np.zeros(len(interval), dtype=int)
        tumor_error = np.zeros(len(interval), dtype=float)
        for sample in self.tumor_samples + self.normal_samples:
            counts = pileup_counts(
                [r for r in reads if r.sample == sample], interval, reference, reference_start, self.min_base_quality
            )
            depths[sample] = counts.depth
            if sample in self.tumor_samples:
                tumor_depth += counts.depth
                tumor_alt += counts.alt
                tumor_error += counts.error
        with np.errstate(divide='ignore', invalid='ignore'):
            mean_error = np.where(tumor_depth > 0, tumor_error / np.maximum(tumor_depth, 1), 1e-3)
        lod = log10_odds_of_variation(tumor_depth, tumor_alt, mean_error, self.allele_fraction)
        return depths, tumor_depth, lod

    def non_ref_lod(self, depth: int, error: float = 1e-3) -> float:
        """
        the log odds of an unseen alternate allele at a variant position (no reads support it). This is 0
        at the maximum likelihood allele fraction and negative for a fixed minimum allele fraction
        """
        return float(log10_odds_of_variation([depth], [0], [error], self.allele_fraction)[0])

    def _block_record(self, contig: str, block: _Block, reference: str, reference_start: int) -> AlleleCall:
        no_call = block.state[0] == BLOCK_STATE.NO_CALL
        samples = {}
        for sample in self.tumor_samples + self.normal_samples:
            data = {FORMAT.GT: './.' if no_call else '0/0', FORMAT.DP: block.min_depth[sample]}
            if sample in self.tumor_samples:
                data[FORMAT.TLOD] = block.min_lod
            samples[sample] = data
        return AlleleCall(
            contig,
            block.start,
            reference[block.start - reference_start],
            [NON_REF_ALLELE],
            samples=samples,
            end=block.end,
        )

    def region_records(
        self,
        contig: str,
        interval: Interval,
        reads: Sequence[AlignedRead],
        calls: Sequence[AlleleCall],
        reference: str,
        reference_start: int,
    ) -> List[AlleleCall]:
        """
        the reference blocks and variant records covering an interval, in coordinate order

        Args:
            contig: the contig of the interval
            interval: the positions to report
            reads: the reads of the region
            calls: the variant calls of the region (all starting within the interval)
            reference: reference bases starting at reference_start
            reference_start: position of the first base of reference
        """
        depths, tumor_depth, lod = self.position_evidence(reads, interval, reference, reference_start)
        starts: Dict[int, List[AlleleCall]] = {}
        covered = set()
        for call in calls:
            starts.setdefault(call.pos, []).append(call)
            covered.update(range(call.pos, call.stop + 1))

        records: List[AlleleCall] = []
        block: Optional[_Block] = None

        def close():
            nonlocal block
            if block is not None:
                records.append(self._block_record(contig, block, reference, reference_start))
                block = None

        for offset, pos in enumerate(range(interval.start, interval.end + 1)):
            if pos in covered:
                state: Tuple = (BLOCK_STATE.VARIANT,)
            elif tumor_depth[offset] == 0:
                state = (BLOCK_STATE.NO_CALL,)
            else:
                state = (BLOCK_STATE.REF_BLOCK, band_index(float(lod[offset]), self.lod_bands))
            if block is not None and block.state != state:
                close()
            if state[0] == BLOCK_STATE.VARIANT:
                for call in starts.get(pos, []):
                    records.append(append_non_ref(call, self.non_ref_lod(int(tumor_depth[offset]))))
                continue
            if block is None:
                block = _Block(
                    state,
                    pos,
                    pos,
                    {sample: int(depth[offset]) for sample, depth in depths.items()},
                    float(lod[offset]),
                )
            else:
                block.end = pos
                for sample, depth in depths.items():
                    block.min_depth[sample] = min(block.min_depth[sample], int(depth[offset]))
                block.min_lod = min(block.min_lod, float(lod[offset]))
        close()
        return records
