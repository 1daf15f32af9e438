"""
the auxiliary tables consumed by the filter stage
"""
from typing import Dict, List, Optional, Tuple

import pandas as pd

from ..error import InputFileError
from ..interval import Interval
from ..util import logger, open_text

DEFAULT_MINOR_ALLELE_FRACTION = 0.5


def _read_tsv(filename: str, required: List[str], comment: Optional[str] = '#') -> pd.DataFrame:
    logger.info(f'loading: {filename}')
    try:
        df = pd.read_csv(filename, sep='\t', comment=comment, dtype={'sample': str, 'contig': str})
    except (OSError, pd.errors.EmptyDataError) as err:
        raise InputFileError(f'unable to read the table: {filename}') from err
    for col in required:
        if col not in df.columns:
            raise InputFileError(f'Missing required column: {col} ({filename})')
    return df


def read_contamination_table(*filenames: str) -> Dict[str, float]:
    """
    read the estimated fraction of reads from another individual for each sample

    Returns:
        the contamination fraction by sample
    """
    result: Dict[str, float] = {}
    for filename in filenames:
        df = _read_tsv(filename, ['sample', 'contamination'])
        for row in df.to_dict('records'):
            fraction = float(row['contamination'])
            if not 0 <= fraction <= 1:
                raise InputFileError(f'contamination must be between 0 and 1: {row["sample"]}={fraction} ({filename})')
            result[row['sample']] = fraction
    return result


def _header_sample(filename: str) -> Optional[str]:
    with open_text(filename) as fh:
        for line in fh:
            if not line.startswith('#'):
                break
            if line.startswith('#SAMPLE='):
                return line.strip().split('=', 1)[1]
    return None


class SegmentationTable:
    """
    minor allele fractions of the tumor copy number segments, by sample and contig
    """

    def __init__(self, segments: Optional[Dict[str, Dict[str, List[Tuple[Interval, float]]]]] = None):
        self.segments = segments or {}
        for by_contig in self.segments.values():
            for contig_segments in by_contig.values():
                contig_segments.sort(key=lambda x: (x[0].start, x[0].end))

    def __len__(self):
        return sum([len(s) for by_contig in self.segments.values() for s in by_contig.values()])

    def minor_allele_fraction(self, sample: str, contig: str, pos: int) -> float:
        """
        Example:
            >>> table = SegmentationTable({'t': {'chr1': [(Interval(1, 100), 0.3)]}})
            >>> table.minor_allele_fraction('t', 'chr1', 50), table.minor_allele_fraction('t', 'chr1', 500)
            (0.3, 0.5)
        """
        for segment, fraction in self.segments.get(sample, {}).get(contig, []):
            if segment.start > pos:
                break
            if pos <= segment.end:
                return fraction
        return DEFAULT_MINOR_ALLELE_FRACTION

    @classmethod
    def read(cls, *filenames: str, default_sample: str = '') -> 'SegmentationTable':
        segments: Dict[str, Dict[str, List[Tuple[Interval, float]]]] = {}
        for filename in filenames:
            try:
                sample = _header_sample(filename) or default_sample
            except OSError as err:
                raise InputFileError(f'unable to read the table: {filename}') from err
            df = _read_tsv(filename, ['contig', 'start', 'end', 'minor_allele_fraction'])
            for row in df.to_dict('records'):
                row_sample = row.get('sample', sample) or sample
                segment = Interval(int(row['start']), int(row['end']))
                segments.setdefault(str(row_sample), {}).setdefault(row['contig'], []).append(
                    (segment, float(row['minor_allele_fraction']))
                )
        return cls(segments)
