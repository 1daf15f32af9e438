"""
alignment of assembled haplotypes back to the reference and the conversion of those alignments into
small variant events
"""
from dataclasses import dataclass
from typing import List, Sequence

from ..bam import cigar as _cigar
from ..constants import CIGAR
from ..types import CigarTuples
from ..util import logger

MATCH_SCORE = 200
MISMATCH_SCORE = -150
GAP_OPEN_SCORE = -260
GAP_EXTEND_SCORE = -11

_MATCH, _INS, _DEL = range(3)
_NEG_INF = float('-inf')


@dataclass(frozen=True, order=True)
class VariantEvent:
    """
    a single difference between a haplotype and the reference in VCF style. Indels include
    the preceding (anchor) reference base

    Attributes:
        pos: 1-based position of the first reference base of the event
        ref: the reference bases replaced
        alt: the haplotype bases
    """

    pos: int
    ref: str
    alt: str

    @property
    def end(self) -> int:
        return self.pos + len(self.ref) - 1

    @property
    def is_snv(self) -> bool:
        return len(self.ref) == 1 and len(self.alt) == 1

    @property
    def is_indel(self) -> bool:
        return len(self.ref) != len(self.alt)

    def __str__(self):
        return f'{self.pos}:{self.ref}>{self.alt}'


def _gotoh(query: str, target: str) -> CigarTuples:
    """
    global alignment with affine gaps. Insertions consume the query only and deletions consume the target only

    Example:
        >>> _gotoh('ACT', 'AGT')
        [(7, 1), (8, 1), (7, 1)]
    """
    n, m = len(query), len(target)
    if n == 0:
        return [(CIGAR.D, m)] if m else []
    if m == 0:
        return [(CIGAR.I, n)]
    scores = [[[_NEG_INF] * (m + 1) for _ in range(n + 1)] for _ in range(3)]
    pointers = [[[_MATCH] * (m + 1) for _ in range(n + 1)] for _ in range(3)]
    scores[_MATCH][0][0] = 0
    for i in range(1, n + 1):
        scores[_INS][i][0] = GAP_OPEN_SCORE + GAP_EXTEND_SCORE * (i - 1)
        pointers[_INS][i][0] = _INS
    for j in range(1, m + 1):
        scores[_DEL][0][j] = GAP_OPEN_SCORE + GAP_EXTEND_SCORE * (j - 1)
        pointers[_DEL][0][j] = _DEL

    def best(options):
        best_state = 0
        for state in range(1, 3):
            if options[state] > options[best_state]:
                best_state = state
        return options[best_state], best_state

    for i in range(1, n + 1):
        for j in range(1, m + 1):
            score = MATCH_SCORE if query[i - 1] == target[j - 1] else MISMATCH_SCORE
            value, prev = best([scores[s][i - 1][j - 1] for s in range(3)])
            scores[_MATCH][i][j] = value + score
            pointers[_MATCH][i][j] = prev
            value, prev = best(
                [
                    scores[_MATCH][i - 1][j] + GAP_OPEN_SCORE,
                    scores[_INS][i - 1][j] + GAP_EXTEND_SCORE,
                    scores[_DEL][i - 1][j] + GAP_OPEN_SCORE,
                ]
            )
            scores[_INS][i][j] = value
            pointers[_INS][i][j] = prev
            value, prev = best(
                [
                    scores[_MATCH][i][j - 1] + GAP_OPEN_SCORE,
                    scores[_INS][i][j - 1] + GAP_OPEN_SCORE,
                    scores[_DEL][i][j - 1] + GAP_EXTEND_SCORE,
                ]
            )
            scores[_DEL][i][j] = value
            pointers[_DEL][i][j] = prev

    _, state = best([scores[s][n][m] for s in range(3)])
    i, j = n, m
    states = []
    while i > 0 or j > 0:
        prev = pointers[state][i][j]
        if state == _MATCH:
            states.append(CIGAR.EQ if query[i - 1] == target[j - 1] else CIGAR.X)
            i -= 1
            j -= 1
        elif state == _INS:
            states.append(CIGAR.I)
            i -= 1
        else:
            states.append(CIGAR.D)
            j -= 1
        state = prev
    states.reverse()
    return _cigar.join([(s, 1) for s in states])


def align_haplotype(haplotype: str, reference: str) -> CigarTuples:
    """
    align a haplotype to the reference window it was assembled against. The shared prefix and suffix
    are matched directly and only the remainder is aligned

    Example:
        >>> align_haplotype('AAACGGG', 'AAATGGG')
        [(7, 3), (8, 1), (7, 3)]
    """
    prefix = 0
    while prefix < min(len(haplotype), len(reference)) and haplotype[prefix] == reference[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < min(len(haplotype), len(reference)) - prefix
        and haplotype[-1 - suffix] == reference[-1 - suffix]
    ):
        suffix += 1
    core = _gotoh(haplotype[prefix : len(haplotype) - suffix], reference[prefix : len(reference) - suffix])
    return _cigar.join([(CIGAR.EQ, prefix)], core, [(CIGAR.EQ, suffix)])


def left_normalize(event: VariantEvent, reference: str, reference_start: int) -> VariantEvent:
    """
    shift an anchored indel as far left as the reference window allows

    Example:
        >>> left_normalize(VariantEvent(4, 'AA', 'A'), 'CCAAAGAT', 1)
        VariantEvent(pos=2, ref='CA', alt='C')
    """
    if not event.is_indel or event.ref[0] != event.alt[0]:
        return event
    pos, ref, alt = event.pos, event.ref, event.alt
    while pos > reference_start and ref[-1] == alt[-1]:
        previous = reference[pos - reference_start - 1]
        ref = previous + ref[:-1]
        alt = previous + alt[:-1]
        pos -= 1
    return VariantEvent(pos, ref, alt)


def extract_events(cigar: CigarTuples, haplotype: str, reference: str, reference_start: int) -> List[VariantEvent]:
    """
    convert the alignment of a haplotype to a list of events sorted by position. An indel immediately
    following a mismatch absorbs the mismatched anchor base

    Args:
        cigar: the alignment of the haplotype to the reference window
        haplotype: the haplotype bases
        reference: the reference window bases
        reference_start: the position of the first base of the reference window
    """
    events: List[VariantEvent] = []
    qpos = 0
    rpos = 0
    previous_state = None
    for state, freq in cigar:
        if state == CIGAR.EQ:
            qpos += freq
            rpos += freq
        elif state in {CIGAR.X, CIGAR.M}:
            for i in range(freq):
                if haplotype[qpos + i] != reference[rpos + i]:
                    events.append(VariantEvent(reference_start + rpos + i, reference[rpos + i], haplotype[qpos + i]))
            qpos += freq
            rpos += freq
        elif state in {CIGAR.I, CIGAR.D}:
            if rpos == 0 or qpos == 0:
                logger.debug(f'dropping unanchored indel at the start of the window {reference_start}')
            else:
                anchor_ref = reference[rpos - 1]
                anchor_alt = haplotype[qpos - 1]
                if previous_state == CIGAR.X and events and events[-1].pos == reference_start + rpos - 1:
                    events.pop()
                if state == CIGAR.I:
                    event = VariantEvent(reference_start + rpos - 1, anchor_ref, anchor_alt + haplotype[qpos : qpos + freq])
                else:
                    event = VariantEvent(reference_start + rpos - 1, anchor_ref + reference[rpos : rpos + freq], anchor_alt)
                events.append(left_normalize(event, reference, reference_start))
            if state == CIGAR.I:
                qpos += freq
            else:
                rpos += freq
        previous_state = state
    return sorted(set(events))


def merge_mnps(
    events: Sequence[VariantEvent], reference: str, reference_start: int, max_mnp_distance: int
) -> List[VariantEvent]:
    """
    merge chains of SNVs no more than max_mnp_distance apart (with no indel between them) into a single
    multi-nucleotide substitution spanning the reference bases from the first to the last SNV

    Example:
        >>> events = [VariantEvent(3, 'C', 'G'), VariantEvent(5, 'A', 'T')]
        >>> merge_mnps(events, 'AACGATT', 1, 2)
        [VariantEvent(pos=3, ref='CGA', alt='GGT')]
        >>> merge_mnps(events, 'AACGATT', 1, 1)
        [VariantEvent(pos=3, ref='C', alt='G'), VariantEvent(pos=5, ref='A', alt='T')]
    """
    if max_mnp_distance < 1:
        return list(events)
    groups: List[List[VariantEvent]] = []
    for event in sorted(events):
        if (
            event.is_snv
            and groups
            and groups[-1][-1].is_snv
            and event.pos - groups[-1][-1].pos <= max_mnp_distance
        ):
            groups[-1].append(event)
        else:
            groups.append([event])
    result = []
    for group in groups:
        if len(group) == 1:
            result.append(group[0])
            continue
        start, end = group[0].pos, group[-1].pos
        alt = list(reference[start - reference_start : end - reference_start + 1])
        for event in group:
            alt[event.pos - start] = event.alt
        result.append(VariantEvent(start, reference[start - reference_start : end - reference_start + 1], ''.join(alt)))
    return result
