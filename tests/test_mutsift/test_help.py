import sys
from unittest.mock import patch

from mutsift.constants import SUBCOMMAND
from mutsift.main import main


class TestHelpMenu:
    def test_main(self):
        with patch.object(sys, 'argv', ['mutsift', '-h']):
            try:
                returncode = main()
            except SystemExit as err:
                assert err.code == 0
            else:
                assert returncode == 0

    def test_call(self):
        with patch.object(sys, 'argv', ['mutsift', SUBCOMMAND.CALL, '-h']):
            try:
                returncode = main()
            except SystemExit as err:
                assert err.code == 0
            else:
                assert returncode == 0

    def test_learn_orientation(self):
        with patch.object(sys, 'argv', ['mutsift', SUBCOMMAND.LEARN_ORIENTATION, '-h']):
            try:
                returncode = main()
            except SystemExit as err:
                assert err.code == 0
            else:
                assert returncode == 0

    def test_filter(self):
        with patch.object(sys, 'argv', ['mutsift', SUBCOMMAND.FILTER, '-h']):
            try:
                returncode = main()
            except SystemExit as err:
                assert err.code == 0
            else:
                assert returncode == 0

    def test_concordance(self):
        with patch.object(sys, 'argv', ['mutsift', SUBCOMMAND.CONCORDANCE, '-h']):
            try:
                returncode = main()
            except SystemExit as err:
                assert err.code == 0
            else:
                assert returncode == 0

    def test_config(self):
        with patch.object(sys, 'argv', ['mutsift', SUBCOMMAND.CONFIG, '-h']):
            try:
                returncode = main()
            except SystemExit as err:
                assert err.code == 0
            else:
                assert returncode == 0

    def test_bad_option(self):
        with patch.object(sys, 'argv', ['mutsift', SUBCOMMAND.FILTER, '--not_an_option']):
            try:
                returncode = main()
            except SystemExit as err:
                assert err.code != 0
            else:
                assert returncode != 0


class TestConfigCommand:
    def test_writes_defaults(self, tmp_path):
        outputfile = str(tmp_path / 'config.json')
        main([SUBCOMMAND.CONFIG, '-o', outputfile, '--mitochondria_mode'])
        with open(outputfile) as fh:
            content = fh.read()
        assert '"filter.mitochondria_mode": true' in content
