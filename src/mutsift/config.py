import argparse
import json
from typing import Dict, Optional

from snakemake.utils import validate as snakemake_validate

from .constants import float_fraction
from .error import InputFileError
from .schemas import SCHEMA_FILE
from .util import cast_boolean, filepath, logger

MITOCHONDRIA_DEFAULTS = {
    'call.emission_lod': 0.0,
    'call.initial_lod': 0.0,
    'call.max_reads_per_alignment_start': 0,
    'filter.autosomal_coverage': 30.0,
    'filter.mitochondria_mode': True,
    'filter.tumor_lod': 0.0,
}
"""replacement defaults used in mitochondria mode. Values given explicitly by the user are never replaced.
The autosomal coverage stands in for a typical whole genome median so that the NuMT filter runs"""


class CustomHelpFormatter(argparse.ArgumentDefaultsHelpFormatter):
    """
    subclass the default help formatter to stop default printing for required arguments
    """

    def _format_args(self, action, default_metavar):
        if action.metavar is None:
            action.metavar = get_metavar(action.type)
        return super(CustomHelpFormatter, self)._format_args(action, default_metavar)

    def _get_help_string(self, action):
        if action.required:
            return action.help
        return super(CustomHelpFormatter, self)._get_help_string(action)

    def add_arguments(self, actions):
        # sort the arguments alphanumerically so they print in the help that way
        actions = sorted(actions, key=lambda x: getattr(x, 'option_strings'))
        super(CustomHelpFormatter, self).add_arguments(actions)


def get_metavar(arg_type):
    """
    For a given argument type, returns the string to be used for the metavar argument in add_argument

    Example:
        >>> get_metavar(bool)
        '{True,False}'
    """
    if arg_type in [bool, cast_boolean]:
        return '{True,False}'
    elif arg_type in [float_fraction, float]:
        return 'FLOAT'
    elif arg_type == int:
        return 'INT'
    elif arg_type == filepath:
        return 'FILEPATH'
    return None


def validate_config(config: Dict, mitochondria_mode: bool = False) -> Dict:
    """
    check the config against the schema and fill in any missing values with their defaults.

    Args:
        config: the user-supplied config (not modified)
        mitochondria_mode: replace the defaults for keys not given by the user with the mitochondrial defaults

    Returns:
        the completed config
    """
    user_keys = set(config.keys())
    result = dict(config)
    snakemake_validate(result, SCHEMA_FILE, set_default=True)
    if mitochondria_mode or result.get('filter.mitochondria_mode'):
        for key, value in MITOCHONDRIA_DEFAULTS.items():
            if key not in user_keys or key.endswith('mitochondria_mode'):
                result[key] = value
        logger.info('using mitochondria mode defaults')
    return result


def load_config(filename: Optional[str] = None, mitochondria_mode: bool = False) -> Dict:
    """
    read a JSON config file (if given), validate it and apply the defaults
    """
    config: Dict = {}
    if filename:
        try:
            with open(filename, 'r') as fh:
                config = json.load(fh)
        except OSError as err:
            raise InputFileError(f'unable to read the config file: {filename}') from err
        except json.JSONDecodeError as err:
            raise InputFileError(f'the config file is not valid JSON: {filename} ({err})') from err
    return validate_config(config, mitochondria_mode=mitochondria_mode)
