import errno
import gzip
import hashlib
import logging
import os
import time
from glob import glob
from typing import Dict, Iterable, List, Optional

import pandas as pd
from braceexpand import braceexpand

from .constants import COMPLETE_STAMP

logger = logging.getLogger('mutsift')


def bash_expands(*expressions):
    """
    expand a file glob expression, allowing bash-style brackets.

    Returns:
        list: a list of files

    Example:
        >>> bash_expands('./{test,doc}/*py')
        [...]
    """
    result = []
    for expression in expressions:
        eresult = []
        for name in braceexpand(expression):
            for fname in glob(name):
                eresult.append(fname)
        if not eresult:
            raise FileNotFoundError('The expression does not match any files', expression)
        result.extend(eresult)
    return [os.path.abspath(f) for f in result]


def filepath(path):
    try:
        file_list = bash_expands(path)
    except FileNotFoundError:
        raise TypeError('File does not exist', path)
    else:
        if len(file_list) > 1:
            raise TypeError('File pattern match multiple files and expected only one', path)
    return file_list[0]


def cast_null(input_value):
    value = str(input_value).lower()
    if value in ['none', 'null', '.']:
        return None
    raise TypeError('casting to null/None failed', input_value)


def cast_boolean(input_value):
    value = str(input_value).lower()
    if value in ['t', 'true', '1', 'y', 'yes', '+']:
        return True
    elif value in ['f', 'false', '0', 'n', 'no', '-']:
        return False
    raise TypeError('casting to boolean failed', input_value)


def soft_cast(value, cast_type):
    """
    cast a value to a given type, if the cast fails, cast to null

    Example:
        >>> soft_cast('.', float) is None
        True
        >>> soft_cast('0.5', float)
        0.5
    """
    try:
        if cast_type == bool:
            return cast_boolean(value)
        return cast_type(value)
    except (TypeError, ValueError):
        pass
    return cast_null(value)


def log_arguments(args):
    """
    output the arguments to the console

    Args:
        args (Namespace): the namespace to print arguments for
    """
    logger.info('arguments')

    indent = ' '

    for arg, val in sorted(args.__dict__.items()):
        if isinstance(val, list):
            if len(val) <= 1:
                logger.info(f'{indent}{arg} = {val}')
                continue
            logger.info(f'{indent}{arg} = [')
            for v in val:
                logger.info(f'{indent * 2}{repr(v)}')
            logger.info(f'{indent}]')
        elif any([isinstance(val, typ) for typ in [str, int, float, bool, tuple]]) or val is None:
            logger.info(f'{indent}{arg}= {repr(val)}')
        else:
            logger.info(f'{arg} = {object.__repr__(val)}')


def mkdirp(dirname):
    """
    Make a directory or path of directories. Suppresses the error that is normally raised when the directory already exists
    """
    logger.info(f"creating output directory: '{dirname}'")
    try:
        os.makedirs(dirname)
    except OSError as exc:
        if exc.errno == errno.EEXIST and os.path.isdir(dirname):
            pass
        else:
            raise exc
    return dirname


def open_text(filename: str, mode: str = 'r'):
    """
    open a plain text or gzipped text file based on the file extension
    """
    if filename.endswith('.gz'):
        return gzip.open(filename, mode + 't')
    return open(filename, mode)


def output_tabbed_file(rows: Iterable[Dict], filename: str, header: Optional[List[str]] = None):
    rows = list(rows)
    if header is None:
        header = []
        for row in rows:
            header.extend([col for col in row if col not in header])
    logger.info(f'writing: {filename}')
    df = pd.DataFrame.from_records(rows, columns=header)
    df.to_csv(filename, columns=header, index=False, sep='\t', na_rep='NaN')


def format_run_time(duration: int) -> str:
    """
    Example:
        >>> format_run_time(3725)
        '1:02:05'
    """
    hours = duration // 3600
    minutes = (duration - hours * 3600) // 60
    seconds = duration - hours * 3600 - minutes * 60
    return '{}:{:02d}:{:02d}'.format(hours, minutes, seconds)


def generate_complete_stamp(output_dir: str, start_time: Optional[int] = None) -> str:
    """
    writes a complete stamp, optionally including the run time if start_time is given

    Args:
        output_dir: path to the output dir the stamp should be written in
        start_time: the start time

    Return:
        path to the complete stamp

    Example:
        >>> generate_complete_stamp('some_output_dir')
        'some_output_dir/MUTSIFT.COMPLETE'
    """
    stamp = os.path.join(output_dir, COMPLETE_STAMP)
    logger.info(f'complete: {stamp}')
    with open(stamp, 'w') as fh:
        if start_time is not None:
            duration = int(time.time()) - start_time
            fh.write('run time (hh/mm/ss): {}\n'.format(format_run_time(duration)))
            fh.write('run time (s): {}\n'.format(duration))
    return stamp


def derive_seed(seed: int, *keys) -> int:
    """
    derive a stable sub-seed from a global seed and any number of keys (ex. contig and position).
    The result does not depend on the python hash seed so runs are reproducible across processes

    Example:
        >>> derive_seed(1, 'chr1', 100) == derive_seed(1, 'chr1', 100)
        True
    """
    digest = hashlib.sha256(':'.join([str(seed)] + [str(k) for k in keys]).encode('utf8'))
    return int.from_bytes(digest.digest()[:8], 'big')
