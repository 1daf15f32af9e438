"""
module responsible for small utility functions and constants used throughout the mutsift package
"""
import argparse
from typing import Any, Dict, List

from Bio.Seq import Seq

PROGNAME: str = 'mutsift'

COMPLETE_STAMP: str = 'MUTSIFT.COMPLETE'
"""Filename for all complete stamp files"""

NON_REF_ALLELE: str = '<NON_REF>'
"""symbolic allele representing any possible alternate allele not explicitly listed"""

NULL_BASE: str = 'N'


class MutsiftNamespace:
    """
    Namespace to hold module constants

    Example:
        >>> class COLOUR(MutsiftNamespace):
        ...     RED: str = 'red'
        >>> COLOUR.enforce('red')
        'red'
        >>> COLOUR.reverse('red')
        'RED'
    """

    @classmethod
    def _attributes(cls) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for parent in reversed(cls.__mro__):
            for attr, value in vars(parent).items():
                if attr.startswith('_') or callable(value) or isinstance(value, classmethod):
                    continue
                result[attr] = value
        return result

    @classmethod
    def keys(cls) -> List[str]:
        return list(cls._attributes().keys())

    @classmethod
    def values(cls) -> List[Any]:
        return list(cls._attributes().values())

    @classmethod
    def items(cls):
        return list(cls._attributes().items())

    @classmethod
    def enforce(cls, value):
        """
        checks that the current value is part of this namespace

        Raises:
            KeyError: the value did not exist
        """
        if value not in cls.values():
            raise KeyError(f'value {repr(value)} is not a valid {cls.__name__}')
        return value

    @classmethod
    def reverse(cls, value):
        """
        for a given value, return the associated key
        """
        for key, val in cls.items():
            if val == value:
                return key
        raise KeyError(f'value {repr(value)} is not a valid {cls.__name__}')


class SUBCOMMAND(MutsiftNamespace):
    """
    holds controlled vocabulary for the pipeline stages available from the command line
    """

    CALL: str = 'call'
    LEARN_ORIENTATION: str = 'learn_orientation'
    FILTER: str = 'filter'
    CONCORDANCE: str = 'concordance'
    CONFIG: str = 'config'


class SAMPLE_ROLE(MutsiftNamespace):
    TUMOR: str = 'tumor'
    NORMAL: str = 'normal'


class CIGAR(MutsiftNamespace):
    """
    Enum-like. For readable cigar values

    - ``M``: alignment match (can be a sequence match or mismatch)
    - ``I``: insertion to the reference
    - ``D``: deletion from the reference
    - ``N``: skipped region from the reference
    - ``S``: soft clipping (clipped sequences present in SEQ)
    - ``H``: hard clipping (clipped sequences NOT present in SEQ)
    - ``P``: padding (silent deletion from padded reference)
    - ``EQ``: sequence match
    - ``X``: sequence mismatch

    note: the values are the same as those used by pysam
    """

    M: int = 0
    I: int = 1  # noqa: E741
    D: int = 2
    N: int = 3
    S: int = 4
    H: int = 5
    P: int = 6
    X: int = 8
    EQ: int = 7


class VARIANT_TYPE(MutsiftNamespace):
    """
    holds controlled vocabulary for the grouping of calls by their allele shape

    Attributes:
        SNP: all alleles have the same length (includes multi-nucleotide substitutions)
        INDEL: at least one allele differs in length from the reference allele
    """

    SNP: str = 'SNP'
    INDEL: str = 'INDEL'


class READ_ORIENTATION(MutsiftNamespace):
    """
    pair orientation of a read relative to the reference

    Attributes:
        F1R2: read1 maps to the forward strand (or read2 maps to the reverse strand)
        F2R1: read2 maps to the forward strand (or read1 maps to the reverse strand)
    """

    F1R2: str = 'F1R2'
    F2R1: str = 'F2R1'


class REFERENCE_CONFIDENCE_MODE(MutsiftNamespace):
    NONE: str = 'none'
    GVCF: str = 'gvcf'


class INFO(MutsiftNamespace):
    """
    site-level annotation keys written to the INFO column of the call set
    """

    TLOD: str = 'TLOD'
    NLOD: str = 'NLOD'
    POPAF: str = 'POPAF'
    PON: str = 'PON'
    ECNT: str = 'ECNT'
    MBQ: str = 'MBQ'
    MMQ: str = 'MMQ'
    MPOS: str = 'MPOS'
    OCM: str = 'OCM'
    END: str = 'END'


class FORMAT(MutsiftNamespace):
    """
    per-sample annotation keys written to the FORMAT/sample columns of the call set
    """

    GT: str = 'GT'
    AD: str = 'AD'
    AF: str = 'AF'
    DP: str = 'DP'
    F1R2: str = 'F1R2'
    F2R1: str = 'F2R1'
    SB: str = 'SB'
    TLOD: str = 'TLOD'


class FILTER(MutsiftNamespace):
    """
    the fixed vocabulary of filter tags that may be applied to a call
    """

    PASS: str = 'PASS'
    CONTAMINATION: str = 'contamination'
    ORIENTATION: str = 'orientation'
    CHIMERIC_ORIGINAL_ALIGNMENT: str = 'chimeric_original_alignment'
    LOW_ALLELE_FRAC: str = 'low_allele_frac'
    BASE_QUAL: str = 'base_qual'
    MAP_QUAL: str = 'map_qual'
    POSITION: str = 'position'
    GERMLINE: str = 'germline'
    POSSIBLE_NUMT: str = 'possible_numt'
    CLUSTERED_EVENTS: str = 'clustered_events'
    STRAND_BIAS: str = 'strand_bias'
    WEAK_EVIDENCE: str = 'weak_evidence'
    PANEL_OF_NORMALS: str = 'panel_of_normals'
    NORMAL_ARTIFACT: str = 'normal_artifact'


# annotations with one value per alternate allele
PER_ALT_INFO = {INFO.TLOD, INFO.NLOD, INFO.POPAF, INFO.MPOS}
PER_ALT_FORMAT = {FORMAT.AF, FORMAT.TLOD}
# annotations with one value per allele (including the reference allele)
PER_ALLELE_INFO = {INFO.MBQ, INFO.MMQ}
PER_ALLELE_FORMAT = {FORMAT.AD, FORMAT.F1R2, FORMAT.F2R1}

BASES = 'ACGT'


def reverse_complement(s: str) -> str:
    """
    wrapper for the Bio.Seq reverse_complement method

    Args:
        s: the input DNA sequence

    Returns:
        str: the reverse complement of the input sequence

    Example:
        >>> reverse_complement('ATCCGGT')
        'ACCGGAT'
    """
    return str(Seq(s).reverse_complement())


def float_fraction(num):
    """
    cast input to a float

    Args:
        num: input to cast

    Returns:
        float

    Raises:
        TypeError: if the input cannot be cast to a float or the number is not between 0 and 1
    """
    try:
        num = float(num)
    except ValueError:
        raise argparse.ArgumentTypeError('Must be a value between 0 and 1')
    if num < 0 or num > 1:
        raise argparse.ArgumentTypeError('Must be a value between 0 and 1')
    return num
