"""
holds methods related to processing cigar tuples. Cigar tuples are generally
an iterable list of tuples where the first element in each tuple is the
CIGAR value (i.e. 1 for an insertion), and the second value is the frequency
"""
from ..constants import CIGAR
from ..types import CigarTuples

ALIGNED_STATES = {CIGAR.M, CIGAR.X, CIGAR.EQ}
REFERENCE_ALIGNED_STATES = ALIGNED_STATES | {CIGAR.D, CIGAR.N}


def join(*pos) -> CigarTuples:
    """
    given a number of cigar lists, joins them and merges any consecutive tuples
    with the same cigar value

    Example:
        >>> join([(1, 1), (4, 7)], [(4, 3), (2, 4)])
        [(1, 1), (4, 10), (2, 4)]
    """
    result = []
    for cigar in pos:
        for v, f in cigar:
            if f == 0:
                continue
            if len(result) > 0 and result[-1][0] == v:
                result[-1] = (v, f + result[-1][1])
            else:
                result.append((v, f))
    return result


def reference_length(cigar: CigarTuples) -> int:
    """
    number of reference bases consumed by the alignment

    Example:
        >>> reference_length([(CIGAR.S, 2), (CIGAR.M, 10), (CIGAR.D, 3), (CIGAR.I, 1)])
        13
    """
    return sum([f for v, f in cigar if v in REFERENCE_ALIGNED_STATES])

