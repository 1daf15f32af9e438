"""
compares a filtered call set against a truth call set
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from ..constants import VARIANT_TYPE
from ..interval import GenomicInterval, Interval, group_by_contig, position_in
from ..types import AlleleKey
from ..util import logger
from ..variant import AlleleCall, normalize_allele

SUMMARY_COLUMNS = ['type', 'true_positives', 'false_positives', 'false_negatives', 'sensitivity', 'precision']


@dataclass
class ConcordanceSummary:
    type: str
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0

    @property
    def sensitivity(self) -> Optional[float]:
        """
        Example:
            >>> ConcordanceSummary('SNP', 7, 2, 3).sensitivity
            0.7
            >>> ConcordanceSummary('SNP').sensitivity is None
            True
        """
        total = self.true_positives + self.false_negatives
        return self.true_positives / total if total else None

    @property
    def precision(self) -> Optional[float]:
        total = self.true_positives + self.false_positives
        return self.true_positives / total if total else None

    def to_dict(self) -> Dict:
        return {
            'type': self.type,
            'true_positives': self.true_positives,
            'false_positives': self.false_positives,
            'false_negatives': self.false_negatives,
            'sensitivity': self.sensitivity,
            'precision': self.precision,
        }


def allele_keys(call: AlleleCall) -> Set[AlleleKey]:
    """
    the minimal representation of each called alternate allele of a record
    """
    return set([normalize_allele(call.contig, call.pos, call.ref, alt) for alt in call.called_alts])


class ConcordanceEvaluator:
    """
    Args:
        intervals: only sites starting in these intervals are compared. All sites are compared when not given
        mask: sites starting in these intervals are never compared
    """

    def __init__(
        self,
        intervals: Optional[Iterable[GenomicInterval]] = None,
        mask: Optional[Iterable[GenomicInterval]] = None,
    ):
        intervals = list(intervals or [])
        self.intervals: Optional[Dict[str, List[Interval]]] = group_by_contig(intervals) if intervals else None
        self.mask = group_by_contig(mask or [])

    def included(self, call: AlleleCall) -> bool:
        if call.is_reference_block or not call.called_alts:
            return False
        if self.intervals is not None and not position_in(self.intervals.get(call.contig, []), call.pos):
            return False
        return not position_in(self.mask.get(call.contig, []), call.pos)

    def evaluate(self, truth: Iterable[AlleleCall], calls: Iterable[AlleleCall]) -> List[ConcordanceSummary]:
        """
        count the true positive, false negative and false positive sites for each variant type. A site
        matches when it shares the position, reference and at least one alternate allele. Calls which
        failed a filter are treated as not called

        Returns:
            one summary per variant type (SNP first)
        """
        summaries = {vtype: ConcordanceSummary(vtype) for vtype in [VARIANT_TYPE.SNP, VARIANT_TYPE.INDEL]}
        truth_sites = [call for call in truth if self.included(call)]
        called_sites = [call for call in calls if self.included(call)]
        filtered = [call for call in called_sites if not call.passes]
        called_sites = [call for call in called_sites if call.passes]
        logger.info(
            f'comparing {len(called_sites)} calls ({len(filtered)} filtered calls ignored) to {len(truth_sites)} truth sites'
        )

        truth_alleles: Set[AlleleKey] = set()
        for call in truth_sites:
            truth_alleles.update(allele_keys(call))
        called_alleles: Set[AlleleKey] = set()
        for call in called_sites:
            called_alleles.update(allele_keys(call))

        for call in truth_sites:
            summary = summaries[call.variant_type()]
            if allele_keys(call) & called_alleles:
                summary.true_positives += 1
            else:
                summary.false_negatives += 1
        for call in called_sites:
            if not allele_keys(call) & truth_alleles:
                summaries[call.variant_type()].false_positives += 1
        return list(summaries.values())
