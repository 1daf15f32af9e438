import pytest

from mutsift.bam.cache import ReadSource, fetch_all
from mutsift.constants import SAMPLE_ROLE
from mutsift.error import InputFileError

from ..mock import CONTIG, make_read, write_bam

CONTIGS = [(CONTIG, 1000)]


@pytest.fixture
def tumor_bam(tmp_path):
    reads = [
        make_read(100, 'ACGTACGTAC', name='good', sample='tumor'),
        make_read(105, 'ACGTACGTAC', name='reverse', sample='tumor', is_reverse=True, is_read1=False),
        make_read(120, 'ACGTACGTAC', name='low_mq', sample='tumor', mapping_quality=5),
        make_read(500, 'ACGTACGTAC', name='numt', sample='tumor', original_contig='chr1'),
    ]
    return write_bam(str(tmp_path / 'tumor.bam'), CONTIGS, reads, 'tumor_sample')


class TestReadSource:
    def test_sample_from_read_group(self, tumor_bam):
        source = ReadSource(tumor_bam)
        assert source.sample == 'tumor_sample'
        assert source.role == SAMPLE_ROLE.TUMOR

    def test_sample_override(self, tumor_bam):
        assert ReadSource(tumor_bam, role=SAMPLE_ROLE.NORMAL, sample='other').sample == 'other'

    def test_bad_role(self, tumor_bam):
        with pytest.raises(KeyError):
            ReadSource(tumor_bam, role='germline')

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputFileError):
            ReadSource(str(tmp_path / 'missing.bam'))

    def test_fetch(self, tumor_bam):
        reads = list(ReadSource(tumor_bam).fetch(CONTIG, 1, 200))
        assert sorted([r.name for r in reads]) == ['good', 'low_mq', 'reverse']
        read = [r for r in reads if r.name == 'reverse'][0]
        assert read.start == 105
        assert read.end == 114
        assert read.is_reverse
        assert not read.is_read1
        assert read.sample == 'tumor_sample'

    def test_mapping_quality_filter(self, tumor_bam):
        reads = list(ReadSource(tumor_bam, min_mapping_quality=20).fetch(CONTIG, 1, 200))
        assert 'low_mq' not in [r.name for r in reads]

    def test_original_alignment(self, tumor_bam):
        reads = list(ReadSource(tumor_bam).fetch(CONTIG, 500, 500))
        assert [r.original_contig for r in reads] == ['chr1']

    def test_contig_alias(self, tumor_bam):
        source = ReadSource(tumor_bam)
        assert source.valid_chr('M')
        assert not source.valid_chr('chr2')
        reads = list(source.fetch('M', 100, 100))
        assert [r.contig for r in reads] == ['M']

    @pytest.mark.parametrize('bam_contig', ['MT', 'chrMT'])
    def test_mitochondrial_alias(self, tmp_path, bam_contig):
        reads = [make_read(100, 'ACGTACGTAC', name='good', contig=bam_contig)]
        filename = write_bam(str(tmp_path / 'mt.bam'), [(bam_contig, 1000)], reads, 'tumor')
        source = ReadSource(filename)
        assert source.valid_chr(CONTIG)
        assert not source.valid_chr('chr1')
        reads = list(source.fetch(CONTIG, 100, 100))
        assert [(r.name, r.contig) for r in reads] == [('good', CONTIG)]

    def test_missing_contig(self, tumor_bam):
        assert list(ReadSource(tumor_bam).fetch('chr2', 1, 100)) == []


class TestFetchAll:
    def test_sorted_over_sources(self, tmp_path):
        tumor = write_bam(str(tmp_path / 'tumor.bam'), CONTIGS, [make_read(50, 'ACGTA', name='t')], 'tumor')
        normal = write_bam(str(tmp_path / 'normal.bam'), CONTIGS, [make_read(40, 'ACGTA', name='n')], 'normal')
        sources = [ReadSource(tumor), ReadSource(normal, role=SAMPLE_ROLE.NORMAL)]
        reads = fetch_all(sources, CONTIG, 1, 100)
        assert [(r.name, r.sample) for r in reads] == [('n', 'normal'), ('t', 'tumor')]
