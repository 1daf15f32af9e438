"""
the call record shared by the calling, filtering and concordance stages
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .constants import (
    FILTER,
    FORMAT,
    NON_REF_ALLELE,
    PER_ALLELE_FORMAT,
    PER_ALLELE_INFO,
    PER_ALT_FORMAT,
    PER_ALT_INFO,
    VARIANT_TYPE,
)


def is_symbolic(allele: str) -> bool:
    return allele.startswith('<') and allele.endswith('>')


@dataclass
class AlleleCall:
    """
    a single call set record

    Attributes:
        contig: the reference contig
        pos: 1-based position of the first reference base
        ref: the reference allele
        alts: alternate alleles, unique and in a stable order
        info: site annotations. Per-allele annotations are lists parallel to the alleles (or alternate alleles)
        samples: per-sample annotations keyed by sample name
        filters: the failed filter tags (empty means the call passes or has not been filtered)
        end: the last reference position covered (reference blocks only)
        qual: the record quality column (not used by the caller)
        id: the record identifier
    """

    contig: str
    pos: int
    ref: str
    alts: List[str]
    info: Dict[str, Any] = field(default_factory=dict)
    samples: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    filters: Set[str] = field(default_factory=set)
    end: Optional[int] = None
    qual: Optional[float] = None
    id: Optional[str] = None

    @property
    def alleles(self) -> List[str]:
        return [self.ref] + list(self.alts)

    @property
    def stop(self) -> int:
        if self.end is not None:
            return self.end
        return self.pos + len(self.ref) - 1

    @property
    def is_reference_block(self) -> bool:
        return self.alts == [NON_REF_ALLELE]

    @property
    def called_alts(self) -> List[str]:
        """
        the non-symbolic alternate alleles
        """
        return [alt for alt in self.alts if not is_symbolic(alt)]

    @property
    def passes(self) -> bool:
        return not self.filters or self.filters == {FILTER.PASS}

    def key(self) -> Tuple[str, int, str, Tuple[str, ...]]:
        return (self.contig, self.pos, self.ref, tuple(sorted(self.called_alts)))

    def __str__(self):
        """
        Example:
            >>> str(AlleleCall('chrM', 302, 'A', ['C', 'AC']))
            'chrM:302-302 A*, [AC, C]'
        """
        return '{}:{}-{} {}*, [{}]'.format(
            self.contig, self.pos, self.pos, self.ref, ', '.join(sorted(self.alts))
        )

    def variant_type(self) -> str:
        """
        Example:
            >>> AlleleCall('chr1', 10, 'AC', ['GT']).variant_type()
            'SNP'
            >>> AlleleCall('chr1', 10, 'A', ['G', 'AT']).variant_type()
            'INDEL'
        """
        for alt in self.called_alts:
            if len(alt) != len(self.ref):
                return VARIANT_TYPE.INDEL
        return VARIANT_TYPE.SNP

    def allele_indices(self, alts: Iterable[str]) -> List[int]:
        wanted = set(alts)
        return [i + 1 for i, alt in enumerate(self.alts) if alt in wanted]

    def subset_alleles(self, keep: Iterable[str]) -> 'AlleleCall':
        """
        drop every alternate allele not in keep. Every per-allele annotation (site and sample) is
        subset in the same way so array lengths always agree with the allele count, and the
        remaining alleles are trimmed of any shared bases

        Example:
            >>> call = AlleleCall('chr1', 10, 'CAG', ['C', 'TAG'], samples={'t': {'F1R2': [4, 1, 2]}})
            >>> sub = call.subset_alleles(['TAG'])
            >>> (sub.pos, sub.ref, sub.alts, sub.samples['t']['F1R2'])
            (10, 'C', ['T'], [4, 2])
        """
        alt_indices = self.allele_indices(keep)
        allele_indices = [0] + alt_indices
        old_to_new = {old: new for new, old in enumerate(allele_indices)}

        def subset_annotations(annotations: Dict[str, Any], per_alt: Set[str], per_allele: Set[str]):
            result = {}
            for key, value in annotations.items():
                if key in per_alt and isinstance(value, list):
                    result[key] = [value[i - 1] for i in alt_indices]
                elif key in per_allele and isinstance(value, list):
                    result[key] = [value[i] for i in allele_indices]
                elif key == FORMAT.GT and isinstance(value, str):
                    result[key] = _remap_genotype(value, old_to_new)
                else:
                    result[key] = value
            return result

        subset = replace(
            self,
            alts=[self.alts[i - 1] for i in alt_indices],
            info=subset_annotations(self.info, PER_ALT_INFO, PER_ALLELE_INFO),
            samples={
                sample: subset_annotations(data, PER_ALT_FORMAT, PER_ALLELE_FORMAT)
                for sample, data in self.samples.items()
            },
            filters=set(self.filters),
        )
        return subset.trim_alleles()

    def trim_alleles(self) -> 'AlleleCall':
        """
        remove bases shared by all (non-symbolic) alleles. The shared suffix is removed first and then
        the shared prefix, always leaving at least one base per allele

        Example:
            >>> call = AlleleCall('chr1', 100, 'GATT', ['GCTT']).trim_alleles()
            >>> (call.pos, call.ref, call.alts)
            (101, 'A', ['C'])
        """
        real = [self.ref] + self.called_alts
        if len(real) < 2:
            return self
        # reverse trim
        trimmed = list(real)
        while all([len(a) > 1 for a in trimmed]) and len(set([a[-1] for a in trimmed])) == 1:
            trimmed = [a[:-1] for a in trimmed]
        # forward trim
        shift = 0
        while all([len(a) > 1 for a in trimmed]) and len(set([a[0] for a in trimmed])) == 1:
            trimmed = [a[1:] for a in trimmed]
            shift += 1
        if trimmed == real:
            return self
        mapping = dict(zip(real[1:], trimmed[1:]))
        return replace(
            self,
            pos=self.pos + shift,
            ref=trimmed[0],
            alts=[mapping.get(alt, alt) for alt in self.alts],
        )


def _remap_genotype(genotype: str, old_to_new: Dict[int, int]) -> str:
    """
    Example:
        >>> _remap_genotype('0/1/2', {0: 0, 2: 1})
        '0/1'
        >>> _remap_genotype('0/1', {0: 0})
        '0/0'
    """
    indices = []
    for value in genotype.replace('|', '/').split('/'):
        if value == '.':
            indices.append(value)
            continue
        if int(value) in old_to_new:
            indices.append(str(old_to_new[int(value)]))
    while len(indices) < 2:
        indices.insert(0, '0')
    return '/'.join(indices)


@dataclass(frozen=True)
class ForcedAllele:
    """
    an externally supplied allele which must be genotyped whether or not it is assembled
    """

    contig: str
    pos: int
    ref: str
    alt: str

    @property
    def end(self) -> int:
        return self.pos + len(self.ref) - 1


def normalize_allele(contig: str, pos: int, ref: str, alt: str) -> Tuple[str, int, str, str]:
    """
    the minimal representation of a single alternate allele

    Example:
        >>> normalize_allele('chr1', 10, 'ACC', 'AC')
        ('chr1', 10, 'AC', 'A')
    """
    call = AlleleCall(contig, pos, ref, [alt]).trim_alleles()
    return (call.contig, call.pos, call.ref, call.alts[0])
