#!python
import argparse
import json
import logging
import platform
import sys
import time
from typing import List, Optional

from . import __version__
from . import config as _config
from . import util as _util
from .call import main as call_main
from .concordance import main as concordance_main
from .constants import SUBCOMMAND
from .filter import main as filter_main
from .orientation import main as orientation_main
from .util import filepath


def create_parser(argv):
    parser = argparse.ArgumentParser(formatter_class=_config.CustomHelpFormatter)
    parser.add_argument(
        '-v',
        '--version',
        action='version',
        version='%(prog)s version ' + __version__,
        help='Outputs the version number',
    )
    subp = parser.add_subparsers(
        dest='command', help='specifies which step/stage in the pipeline or which subprogram to use'
    )
    subp.required = True
    required = {}  # hold required argument group by subparser command name
    optional = {}  # hold optional argument group by subparser command name
    for command in SUBCOMMAND.values():
        subparser = subp.add_parser(
            command, formatter_class=_config.CustomHelpFormatter, add_help=False
        )
        required[command] = subparser.add_argument_group('required arguments')
        optional[command] = subparser.add_argument_group('optional arguments')
        optional[command].add_argument(
            '-h', '--help', action='help', help='show this help message and exit'
        )
        optional[command].add_argument(
            '-v',
            '--version',
            action='version',
            version='%(prog)s version ' + __version__,
            help='Outputs the version number',
        )
        optional[command].add_argument('--log', help='redirect stdout to a log file', default=None)
        optional[command].add_argument(
            '--log_level',
            help='level of logging to output',
            choices=['INFO', 'DEBUG'],
            default='INFO',
        )
        optional[command].add_argument(
            '--config', '-c', help='path to the JSON config file', type=filepath, default=None
        )
        optional[command].add_argument(
            '--mitochondria_mode',
            action='store_true',
            default=False,
            help='use the mitochondrial defaults and enable the mitochondria specific filters',
        )

    required[SUBCOMMAND.CONFIG].add_argument(
        '--outputfile', '-o', required=True, help='path to the outputfile', metavar='FILEPATH'
    )
    for command in set(SUBCOMMAND.values()) - {SUBCOMMAND.CONFIG}:
        required[command].add_argument(
            '-o', '--output', help='path to the output directory', required=True
        )

    for command in [SUBCOMMAND.LEARN_ORIENTATION, SUBCOMMAND.FILTER, SUBCOMMAND.CONCORDANCE]:
        required[command].add_argument(
            '-n',
            '--inputs',
            nargs='+',
            help='path to the input files',
            required=True,
            metavar='FILEPATH',
        )

    # call
    required[SUBCOMMAND.CALL].add_argument(
        '--tumor', nargs='+', required=True, help='tumor alignment (bam) files', metavar='FILEPATH'
    )
    optional[SUBCOMMAND.CALL].add_argument(
        '--normal', nargs='+', default=[], help='matched normal alignment (bam) files', metavar='FILEPATH'
    )
    optional[SUBCOMMAND.CALL].add_argument(
        '--intervals', type=filepath, help='regions (contig:start-end lines or bed) to call'
    )
    optional[SUBCOMMAND.CALL].add_argument(
        '--germline_resource', type=filepath, help='vcf of population allele frequencies'
    )
    optional[SUBCOMMAND.CALL].add_argument(
        '--force_call_alleles', type=filepath, help='vcf of alleles which are always genotyped'
    )
    optional[SUBCOMMAND.CALL].add_argument(
        '--f1r2_output',
        action='store_true',
        default=False,
        help='write the pair orientation counts for learning the orientation model',
    )
    for command in [SUBCOMMAND.CALL, SUBCOMMAND.FILTER]:
        optional[command].add_argument(
            '--panel_of_normals', type=filepath, help='vcf of sites called in unrelated normal samples'
        )
    required[SUBCOMMAND.CALL].add_argument(
        '--reference', '-r', type=filepath, required=True, help='reference genome fasta'
    )

    # filter
    optional[SUBCOMMAND.FILTER].add_argument(
        '--reference', '-r', type=filepath, help='reference genome fasta the calls were made against'
    )
    optional[SUBCOMMAND.FILTER].add_argument(
        '--contamination_table', nargs='+', default=[], help='per-sample contamination estimates', metavar='FILEPATH'
    )
    optional[SUBCOMMAND.FILTER].add_argument(
        '--tumor_segmentation', nargs='+', default=[], help='tumor segment minor allele fractions', metavar='FILEPATH'
    )
    optional[SUBCOMMAND.FILTER].add_argument(
        '--orientation_model', type=filepath, help='model written by the learn_orientation step'
    )

    # concordance
    required[SUBCOMMAND.CONCORDANCE].add_argument(
        '--truth', type=filepath, required=True, help='the truth call set'
    )
    optional[SUBCOMMAND.CONCORDANCE].add_argument(
        '--intervals', type=filepath, help='regions (contig:start-end lines or bed) to compare'
    )
    optional[SUBCOMMAND.CONCORDANCE].add_argument(
        '--mask', type=filepath, help='regions (contig:start-end lines or bed) to exclude from the comparison'
    )

    return parser, parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """
    sets up the parser and checks the validity of command line args
    loads the config and redirects into subcommand main functions

    Args:
        argv: List of arguments, defaults to command line arguments
    """
    if argv is None:  # need to do at run time or patching will not behave as expected
        argv = sys.argv[1:]
    start_time = int(time.time())
    parser, args = create_parser(argv)

    log_conf = {
        'format': '{asctime} [{levelname}] {message}',
        'style': '{',
        'level': args.log_level,
    }

    original_logging_handlers = logging.root.handlers[:]
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    if args.log:  # redirect stdout AND stderr to a log file
        log_conf['filename'] = args.log
    logging.basicConfig(**log_conf)

    _util.logger.info(f'MUTSIFT: {__version__}')
    _util.logger.info(f'hostname: {platform.node()}')
    _util.log_arguments(args)

    config = _config.load_config(args.config, mitochondria_mode=args.mitochondria_mode)

    # try checking the input files exist
    try:
        args.inputs = _util.bash_expands(*args.inputs)
    except AttributeError:
        pass
    except FileNotFoundError:
        parser.error('--inputs file(s) for {} {} do not exist'.format(args.command, args.inputs))

    command = args.command

    try:
        if command == SUBCOMMAND.CALL:
            call_main.main(
                tumor_bams=_util.bash_expands(*args.tumor),
                normal_bams=_util.bash_expands(*args.normal) if args.normal else [],
                reference=args.reference,
                output=args.output,
                config=config,
                intervals=args.intervals,
                germline_resource=args.germline_resource,
                panel_of_normals=args.panel_of_normals,
                force_call_alleles=args.force_call_alleles,
                f1r2_output=args.f1r2_output,
                start_time=start_time,
            )
        elif command == SUBCOMMAND.LEARN_ORIENTATION:
            orientation_main.main(
                inputs=args.inputs,
                output=args.output,
                config=config,
                start_time=start_time,
            )
        elif command == SUBCOMMAND.FILTER:
            filter_main.main(
                inputs=args.inputs,
                output=args.output,
                config=config,
                reference=args.reference,
                contamination_tables=_util.bash_expands(*args.contamination_table)
                if args.contamination_table
                else None,
                segmentation_tables=_util.bash_expands(*args.tumor_segmentation)
                if args.tumor_segmentation
                else None,
                panel_of_normals=args.panel_of_normals,
                orientation_model=args.orientation_model,
                start_time=start_time,
            )
        elif command == SUBCOMMAND.CONCORDANCE:
            concordance_main.main(
                inputs=args.inputs,
                output=args.output,
                config=config,
                truth=args.truth,
                intervals=args.intervals,
                mask=args.mask,
                start_time=start_time,
            )
        else:
            _util.logger.info(f'writing: {args.outputfile}')
            with open(args.outputfile, 'w') as fh:
                fh.write(json.dumps(config, sort_keys=True, indent='  '))

        duration = int(time.time()) - start_time
        _util.logger.info(f'run time (hh/mm/ss): {_util.format_run_time(duration)}')
        _util.logger.info(f'run time (s): {duration}')
    finally:
        for handler in logging.root.handlers[:]:
            logging.root.removeHandler(handler)
        for handler in original_logging_handlers:
            logging.root.addHandler(handler)


if __name__ == '__main__':
    main()
