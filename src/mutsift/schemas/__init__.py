import os
from collections.abc import Mapping

from snakemake.utils import validate as snakemake_validate

SCHEMA_FILE = os.path.join(os.path.dirname(__file__), 'config.json')


class ImmutableDict(Mapping):
    def __init__(self, data):
        self._data = data

    def __getitem__(self, key):
        return self._data[key]

    def __len__(self):
        return len(self._data)

    def __iter__(self):
        return iter(self._data)


DEFAULTS = {}
snakemake_validate(DEFAULTS, SCHEMA_FILE, set_default=True)
DEFAULTS = ImmutableDict(DEFAULTS)
