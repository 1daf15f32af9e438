"""
reading and writing of call sets and the variant-shaped resources (germline population frequencies,
panel of normals, force-called alleles)
"""
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import pandas as pd
import pysam

from .constants import FILTER, FORMAT, INFO, NON_REF_ALLELE, PROGNAME
from .error import InputFileError
from .types import AlleleKey, SequenceDictionary
from .util import logger, open_text, soft_cast
from .variant import AlleleCall, ForcedAllele, is_symbolic, normalize_allele

INFO_HEADER = {
    INFO.TLOD: ('A', 'Float', 'Log 10 likelihood ratio score of variant existing versus not existing'),
    INFO.NLOD: ('A', 'Float', 'Normal log 10 likelihood ratio of diploid het or hom alt genotypes'),
    INFO.POPAF: ('A', 'Float', 'negative log 10 population allele frequencies of alt alleles'),
    INFO.PON: ('0', 'Flag', 'site found in panel of normals'),
    INFO.ECNT: ('1', 'Integer', 'Number of events in this haplotype'),
    INFO.MBQ: ('R', 'Integer', 'median base quality by allele'),
    INFO.MMQ: ('R', 'Integer', 'median mapping quality by allele'),
    INFO.MPOS: ('A', 'Integer', 'median distance from end of read'),
    INFO.OCM: ('1', 'Integer', 'Number of alt reads whose original alignment doesn\'t match the current contig'),
    INFO.END: ('1', 'Integer', 'Stop position of the interval'),
}

FORMAT_HEADER = {
    FORMAT.GT: ('1', 'String', 'Genotype'),
    FORMAT.AD: ('R', 'Integer', 'Allelic depths for the ref and alt alleles in the order listed'),
    FORMAT.AF: ('A', 'Float', 'Allele fractions of alternate alleles in the tumor'),
    FORMAT.DP: ('1', 'Integer', 'Approximate read depth (reads with MQ=255 or with bad mates are filtered)'),
    FORMAT.F1R2: ('R', 'Integer', 'Count of reads in F1R2 pair orientation supporting each allele'),
    FORMAT.F2R1: ('R', 'Integer', 'Count of reads in F2R1 pair orientation supporting each allele'),
    FORMAT.SB: ('4', 'Integer', 'Per-sample component statistics which comprise the Fisher\'s Exact Test to detect strand bias'),
    FORMAT.TLOD: ('1', 'Float', 'Log 10 likelihood ratio score of variant existing versus not existing'),
}

FILTER_HEADER = {
    FILTER.CONTAMINATION: 'contamination',
    FILTER.ORIENTATION: 'orientation bias detected by the orientation bias mixture model',
    FILTER.CHIMERIC_ORIGINAL_ALIGNMENT: 'NuMT variant with too many ALT reads originally from autosome',
    FILTER.LOW_ALLELE_FRAC: 'Allele fraction is below specified threshold',
    FILTER.BASE_QUAL: 'alt median base quality',
    FILTER.MAP_QUAL: 'ref - alt median mapping quality',
    FILTER.POSITION: 'median distance of alt variants from end of reads',
    FILTER.GERMLINE: 'Evidence indicates this site is germline, not somatic',
    FILTER.POSSIBLE_NUMT: 'Allele depth is below expected coverage of NuMT in autosome',
    FILTER.CLUSTERED_EVENTS: 'Clustered events observed in the tumor',
    FILTER.STRAND_BIAS: 'Evidence for alt allele comes from one read direction only',
    FILTER.WEAK_EVIDENCE: 'Mutation does not meet likelihood threshold',
    FILTER.PANEL_OF_NORMALS: 'Blacklisted site in panel of normals',
    FILTER.NORMAL_ARTIFACT: 'artifact_in_normal',
}

INTEGER_KEYS = {INFO.ECNT, INFO.MBQ, INFO.MMQ, INFO.MPOS, INFO.OCM, INFO.END, FORMAT.AD, FORMAT.DP, FORMAT.F1R2, FORMAT.F2R1, FORMAT.SB}
FLOAT_KEYS = {INFO.TLOD, INFO.NLOD, INFO.POPAF, FORMAT.AF, FORMAT.TLOD, 'AF'}
LIST_KEYS = {
    INFO.TLOD, INFO.NLOD, INFO.POPAF, INFO.MBQ, INFO.MMQ, INFO.MPOS,
    FORMAT.AD, FORMAT.AF, FORMAT.F1R2, FORMAT.F2R1, FORMAT.SB, 'AF',
}

REQUIRED_COLUMNS = ['CHROM', 'POS', 'ID', 'REF', 'ALT', 'QUAL', 'FILTER', 'INFO']


def _cast_value(key: str, value: str) -> Any:
    if key in INTEGER_KEYS:
        cast_type = int
    elif key in FLOAT_KEYS:
        cast_type = float
    else:
        return value
    if key in LIST_KEYS:
        return [soft_cast(v, cast_type) for v in value.split(',')]
    return soft_cast(value, cast_type)


def parse_info(info_field: str) -> Dict[str, Any]:
    """
    Example:
        >>> parse_info('TLOD=6.2,3.1;PON;ECNT=2')
        {'TLOD': [6.2, 3.1], 'PON': True, 'ECNT': 2}
    """
    info: Dict[str, Any] = {}
    if not info_field or info_field == '.':
        return info
    for pair in info_field.split(';'):
        if '=' in pair:
            key, value = pair.split('=', 1)
            info[key] = _cast_value(key, value)
        else:
            info[pair] = True
    return info


def parse_sample(format_field: str, sample_field: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    if not format_field or format_field == '.':
        return result
    for key, value in zip(format_field.split(':'), sample_field.split(':')):
        if value == '.' and key != FORMAT.GT:
            continue
        result[key] = _cast_value(key, value)
    return result


def read_header(input_file: str) -> List[str]:
    header_lines = []
    with open_text(input_file) as fh:
        for line in fh:
            if not line.startswith('##'):
                break
            header_lines.append(line.rstrip('\n'))
    return header_lines


def pandas_vcf(input_file: str) -> Tuple[List[str], pd.DataFrame]:
    """
    Read a standard vcf file into a pandas dataframe
    """
    try:
        header_lines = read_header(input_file)
    except OSError as err:
        raise InputFileError(f'unable to read the vcf: {input_file}') from err
    try:
        df = pd.read_csv(
            input_file,
            sep='\t',
            skiprows=len(header_lines),
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            compression='infer',
        )
    except pd.errors.EmptyDataError:
        raise InputFileError(f'the vcf is missing the column header line: {input_file}')
    df = df.rename(columns={df.columns[0]: df.columns[0].replace('#', '')})
    for col in REQUIRED_COLUMNS:
        if col not in df.columns:
            raise InputFileError(f'Missing required column: {col} ({input_file})')
    return header_lines, df


def parse_contig_lines(header_lines: Iterable[str]) -> SequenceDictionary:
    """
    Example:
        >>> parse_contig_lines(['##contig=<ID=chrM,length=16569>'])
        [('chrM', 16569)]
    """
    contigs = []
    for line in header_lines:
        match = re.match(r'^##contig=<ID=([^,>]+)(,length=(\d+))?', line)
        if match:
            length = int(match.group(3)) if match.group(3) else None
            contigs.append((match.group(1), length))
    return contigs


class CallSet:
    """
    a call set read from (or to be written to) a vcf

    Attributes:
        calls: the records in file order
        samples: the sample names in column order
        header_lines: the meta lines (## prefixed) of the input file
    """

    def __init__(self, calls: List[AlleleCall], samples: List[str], header_lines: Optional[List[str]] = None):
        self.calls = calls
        self.samples = samples
        self.header_lines = header_lines or []

    @property
    def sequence_dictionary(self) -> SequenceDictionary:
        return parse_contig_lines(self.header_lines)

    def header_value(self, key: str) -> Optional[str]:
        for line in self.header_lines:
            if line.startswith(f'##{key}='):
                return line.split('=', 1)[1]
        return None

    def samples_by_role(self, role: str) -> List[str]:
        value = self.header_value(f'{role}_sample')
        if value is None:
            return []
        return value.split(',')

    @classmethod
    def read(cls, input_file: str) -> 'CallSet':
        logger.info(f'loading: {input_file}')
        header_lines, df = pandas_vcf(input_file)
        samples = [col for col in df.columns[9:]]
        calls = []
        for row in df.to_dict('records'):
            try:
                calls.append(convert_row(row, samples))
            except (ValueError, KeyError, IndexError, TypeError) as err:
                logger.warning(f'dropping malformed record {row["CHROM"]}:{row["POS"]} ({err})')
        logger.info(f'loaded {len(calls)} records from {input_file}')
        return cls(calls, samples, header_lines)


def convert_row(row: Dict[str, str], samples: List[str]) -> AlleleCall:
    alts = [] if row['ALT'] in {'.', ''} else row['ALT'].split(',')
    filters = set()
    if row['FILTER'] not in {'.', '', FILTER.PASS}:
        filters = set(row['FILTER'].split(';'))
    elif row['FILTER'] == FILTER.PASS:
        filters = {FILTER.PASS}
    info = parse_info(row['INFO'])
    pos = int(row['POS'])
    end = info.pop(INFO.END, None)
    if end == pos + len(row['REF']) - 1:
        end = None
    sample_data = {}
    for sample in samples:
        sample_data[sample] = parse_sample(row.get('FORMAT', '.'), row[sample])
    return AlleleCall(
        contig=row['CHROM'],
        pos=pos,
        ref=row['REF'].upper(),
        alts=[alt if is_symbolic(alt) else alt.upper() for alt in alts],
        info=info,
        samples=sample_data,
        filters=filters,
        end=end,
        qual=soft_cast(row['QUAL'], float),
        id=None if row['ID'] in {'.', ''} else row['ID'],
    )


def _record_value(value: Any) -> Any:
    """
    convert an annotation value to something pysam will accept. Missing values become None

    Example:
        >>> _record_value([np.int64(3), float('nan'), '.'])
        (3, None, None)
    """
    if isinstance(value, (list, tuple)):
        return tuple([_record_value(v) for v in value])
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    if value == '.':
        return None
    return value


def parse_genotype(genotype: Any) -> Tuple[Tuple[Optional[int], ...], bool]:
    """
    Example:
        >>> parse_genotype('0/1')
        ((0, 1), False)
        >>> parse_genotype('./.')
        ((None, None), False)
        >>> parse_genotype('1|0')
        ((1, 0), True)
    """
    if isinstance(genotype, (list, tuple)):
        return tuple(genotype), False
    alleles = tuple([None if a == '.' else int(a) for a in re.split(r'[/|]', genotype)])
    return alleles, '|' in genotype


class VcfWriter:
    """
    writes call records through pysam. Records must be given in coordinate order
    """

    def __init__(
        self,
        filename: str,
        samples: List[str],
        sequence_dictionary: SequenceDictionary,
        reference_confidence: bool = False,
        filtered: bool = False,
        extra_header: Optional[List[str]] = None,
    ):
        self.filename = filename
        self.samples = samples
        self.sequence_dictionary = sequence_dictionary
        self.reference_confidence = reference_confidence
        self.filtered = filtered
        self.extra_header = extra_header or []
        self.fh = None
        self.records_written = 0
        self._undeclared: Set[str] = set()

    def __enter__(self):
        logger.info(f'writing: {self.filename}')
        mode = 'wz' if self.filename.endswith('.gz') else 'w'
        self.fh = pysam.VariantFile(self.filename, mode, header=self.build_header())
        return self

    def __exit__(self, *args):
        self.fh.close()

    def build_header(self) -> pysam.VariantHeader:
        header = pysam.VariantHeader()
        header.add_meta('fileformat', 'VCFv4.2')
        header.add_meta('source', PROGNAME)
        for name, description in FILTER_HEADER.items():
            header.filters.add(name, None, None, description)
        if self.reference_confidence:
            header.add_line(
                f'##ALT=<ID={NON_REF_ALLELE[1:-1]},Description="Represents any possible alternative allele not already represented at this location by REF and ALT">'
            )
        for key, (number, value_type, description) in INFO_HEADER.items():
            header.info.add(key, number, value_type, description)
        for key, (number, value_type, description) in FORMAT_HEADER.items():
            header.formats.add(key, number, value_type, description)
        for line in self.extra_header:
            if not any([line.startswith(prefix) for prefix in ['##fileformat', '##source', '##contig', '##INFO', '##FORMAT', '##FILTER', '##ALT']]):
                header.add_line(line)
        for contig, length in self.sequence_dictionary:
            if length is None:
                header.contigs.add(contig)
            else:
                header.contigs.add(contig, length=length)
        for sample in self.samples:
            header.add_sample(sample)
        return header

    def _declared(self, key: str, declared) -> bool:
        if key in declared:
            return True
        if key not in self._undeclared:
            logger.warning(f'{key} is not a known annotation and will not be written to {self.filename}')
            self._undeclared.add(key)
        return False

    def new_record(self, call: AlleleCall) -> pysam.VariantRecord:
        # END is derived from the stop for records with a symbolic allele
        record = self.fh.new_record(
            contig=call.contig,
            start=call.pos - 1,
            stop=call.stop,
            alleles=(call.ref, *call.alts),
            id=call.id,
            qual=_record_value(call.qual),
        )

        if call.filters - {FILTER.PASS}:
            for name in sorted(call.filters - {FILTER.PASS}):
                record.filter.add(name)
        elif self.filtered and not call.is_reference_block:
            record.filter.add(FILTER.PASS)

        for key, value in call.info.items():
            if key == INFO.END or value is False or value is None:
                continue
            if self._declared(key, self.fh.header.info):
                record.info[key] = _record_value(value)

        format_keys: List[str] = []
        for sample in self.samples:
            for key in call.samples.get(sample, {}):
                if key not in format_keys and self._declared(key, self.fh.header.formats):
                    format_keys.append(key)
        if FORMAT.GT in format_keys:
            format_keys.remove(FORMAT.GT)
            format_keys.insert(0, FORMAT.GT)
        for key in format_keys:
            for sample in self.samples:
                value = call.samples.get(sample, {}).get(key)
                if value is None:
                    continue
                if key == FORMAT.GT:
                    alleles, phased = parse_genotype(value)
                    record.samples[sample][key] = alleles
                    record.samples[sample].phased = phased
                else:
                    record.samples[sample][key] = _record_value(value)
        return record

    def write(self, call: AlleleCall):
        self.fh.write(self.new_record(call))
        self.records_written += 1


def read_germline_resource(input_file: str) -> Dict[AlleleKey, Optional[float]]:
    """
    read population allele frequencies keyed by the normalized allele. Records without an AF are
    kept with a frequency of None so that the default frequency is applied instead of failing
    """
    _, df = pandas_vcf(input_file)
    result: Dict[AlleleKey, Optional[float]] = {}
    missing_af = 0
    for row in df.to_dict('records'):
        info = parse_info(row['INFO'])
        alts = row['ALT'].split(',')
        frequencies = info.get('AF')
        if not isinstance(frequencies, list) or len(frequencies) != len(alts):
            frequencies = [None] * len(alts)
        if None in frequencies:
            missing_af += 1
        for alt, freq in zip(alts, frequencies):
            if alt in {'.', '*'} or is_symbolic(alt):
                continue
            key = normalize_allele(row['CHROM'], int(row['POS']), row['REF'].upper(), alt.upper())
            result[key] = freq
    if missing_af:
        logger.warning(f'{missing_af} germline resource records had no usable AF and will use the default allele frequency')
    logger.info(f'loaded {len(result)} germline resource alleles from {input_file}')
    return result


def read_panel_of_normals(input_file: str) -> Set[AlleleKey]:
    _, df = pandas_vcf(input_file)
    result = set()
    for row in df.to_dict('records'):
        for alt in row['ALT'].split(','):
            if alt in {'.', '*'} or is_symbolic(alt):
                continue
            result.add(normalize_allele(row['CHROM'], int(row['POS']), row['REF'].upper(), alt.upper()))
    logger.info(f'loaded {len(result)} panel of normals alleles from {input_file}')
    return result


def read_force_call_alleles(input_file: str) -> List[ForcedAllele]:
    _, df = pandas_vcf(input_file)
    result = []
    for row in df.to_dict('records'):
        for alt in row['ALT'].split(','):
            if alt in {'.', '*'} or is_symbolic(alt):
                continue
            contig, pos, ref, alt = normalize_allele(row['CHROM'], int(row['POS']), row['REF'].upper(), alt.upper())
            result.append(ForcedAllele(contig, pos, ref, alt))
    result.sort(key=lambda a: (a.contig, a.pos, a.ref, a.alt))
    logger.info(f'loaded {len(result)} force-call alleles from {input_file}')
    return result
