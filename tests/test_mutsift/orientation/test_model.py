import os

import pandas as pd
import pytest

from mutsift.config import load_config
from mutsift.error import InputFileError
from mutsift.orientation.main import MODEL_FILENAME, main
from mutsift.orientation.model import (
    COUNT_COLUMNS,
    ArtifactPrior,
    OrientationBiasModel,
    canonical_context,
    context_of,
    learn_orientation_model,
    read_f1r2_counts,
)


def count_rows(context='ACG', alt_base='A', artifact_f1r2=True, num_artifacts=50, sample='tumor'):
    rows = [[sample, context, '.', 50, 0, 0, 1000]]
    rows.append([sample, context, alt_base, 50, 5, 5 if artifact_f1r2 else 0, num_artifacts])
    rows.append([sample, context, alt_base, 50, 20, 10, 10])
    return pd.DataFrame(rows, columns=COUNT_COLUMNS)


class TestCanonicalContext:
    def test_already_canonical(self):
        assert canonical_context('TAG', 'C') == ('TAG', 'C', False)

    def test_reverse_complemented(self):
        assert canonical_context('CGT', 'T') == ('ACG', 'A', True)

    def test_context_of(self):
        assert context_of('ACGTA', 2) == 'ACG'
        assert context_of('ACGTA', 1) is None
        assert context_of('ACGTA', 5) is None
        assert context_of('ACGTA', 12, reference_start=10) == 'CGT'


class TestLearnOrientationModel:
    def test_f1r2_artifacts(self):
        model = learn_orientation_model(count_rows())
        f1r2, f2r1 = model.prior('tumor', 'ACG', 'A')
        assert f1r2 > 0.01
        assert f1r2 > 10 * f2r1

    def test_reverse_strand_pooled(self):
        model = learn_orientation_model(count_rows(context='CGT', alt_base='T'))
        prior = model.priors[('tumor', 'ACG', 'A')]
        assert prior.f2r1_prior > 10 * prior.f1r2_prior
        assert model.prior('tumor', 'CGT', 'T') == (prior.f2r1_prior, prior.f1r2_prior)

    def test_too_few_alt_sites(self):
        model = learn_orientation_model(count_rows(num_artifacts=2), min_alt_sites=20)
        prior = model.priors[('tumor', 'ACG', 'A')]
        assert (prior.f1r2_prior, prior.f2r1_prior) == (0.0, 0.0)
        assert prior.num_alt_examples == 12
        assert prior.num_examples == 1012

    def test_every_alt_base_has_a_prior(self):
        model = learn_orientation_model(count_rows())
        assert sorted([alt for _, context, alt in model.priors]) == ['A', 'G', 'T']
        assert model.prior('tumor', 'ACG', 'T') == (0.0, 0.0)

    def test_shallow_sites_ignored(self):
        assert len(learn_orientation_model(count_rows(), min_depth=100)) == 0

    def test_unknown_context(self):
        model = learn_orientation_model(count_rows())
        assert model.prior('other', 'ACG', 'A') == (0.0, 0.0)
        assert model.artifact_probability('other', 'ACG', 'A', 10, 10) == 0


class TestArtifactProbability:
    def test_orientation_split(self):
        model = OrientationBiasModel([ArtifactPrior('s', 'ACT', 'A', 0.2, 0.0)])
        assert model.artifact_probability('s', 'ACT', 'A', 10, 10) > 0.99
        assert model.artifact_probability('s', 'ACT', 'A', 10, 0) < 0.01
        assert model.artifact_probability('s', 'ACT', 'A', 0, 0) == 0

    def test_reverse_complement_context(self):
        model = OrientationBiasModel([ArtifactPrior('s', 'ACT', 'A', 0.2, 0.0)])
        assert model.artifact_probability('s', 'AGT', 'T', 10, 0) > 0.99


class TestModelFiles:
    def test_write_and_read(self, tmp_path):
        model = learn_orientation_model(count_rows())
        filename = str(tmp_path / 'model.tsv')
        model.write(filename)
        loaded = OrientationBiasModel.read(filename)
        assert loaded.samples == ['tumor']
        assert set(loaded.priors) == set(model.priors)
        for key, prior in model.priors.items():
            assert loaded.priors[key].f1r2_prior == pytest.approx(prior.f1r2_prior)

    def test_read_missing_columns(self, tmp_path):
        filename = tmp_path / 'model.tsv'
        filename.write_text('sample\tcontext\n')
        with pytest.raises(InputFileError):
            OrientationBiasModel.read(str(filename))

    def test_read_counts_combines_files(self, tmp_path):
        first, second = str(tmp_path / 'a.tsv'), str(tmp_path / 'b.tsv')
        count_rows().to_csv(first, sep='\t', index=False)
        count_rows(sample='other').to_csv(second, sep='\t', index=False)
        counts = read_f1r2_counts(first, second)
        assert len(counts) == 6
        assert set(counts['alt_base']) == {'.', 'A'}

    def test_main(self, tmp_path):
        counts = str(tmp_path / 'f1r2.tsv')
        count_rows().to_csv(counts, sep='\t', index=False)
        filename = main([counts], str(tmp_path / 'output'), load_config())
        assert filename == os.path.join(str(tmp_path / 'output'), MODEL_FILENAME)
        assert OrientationBiasModel.read(filename).prior('tumor', 'ACG', 'A')[0] > 0.01
