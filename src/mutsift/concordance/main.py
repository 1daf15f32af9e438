import os
import time
from typing import Dict, List, Optional

from ..interval import GenomicInterval, load_intervals
from ..util import generate_complete_stamp, logger, mkdirp, output_tabbed_file
from ..vcf import CallSet
from .concordance import SUMMARY_COLUMNS, ConcordanceEvaluator

SUMMARY_FILENAME = 'concordance.tsv'
INPUT_COLUMN = 'input'


def main(
    inputs: List[str],
    output: str,
    config: Dict,
    truth: str,
    intervals: Optional[str] = None,
    mask: Optional[str] = None,
    start_time=int(time.time()),
) -> str:
    """
    Args:
        inputs: the (filtered) call set to evaluate
        output: path to the output directory
        config: the validated run config
        truth: path to the truth call set
        intervals: file of regions to restrict the comparison to (adds to concordance.intervals)
        mask: file of regions to exclude from the comparison

    Returns:
        the path to the summary table
    """
    mkdirp(output)
    included = [GenomicInterval.parse(region) for region in config['concordance.intervals']]
    if intervals:
        included.extend(load_intervals(intervals))
    masked = load_intervals(mask) if mask else []
    evaluator = ConcordanceEvaluator(included, masked)

    truth_set = CallSet.read(truth)
    rows = []
    for filename in inputs:
        call_set = CallSet.read(filename)
        for summary in evaluator.evaluate(truth_set.calls, call_set.calls):
            logger.info(
                f'{summary.type}: TP={summary.true_positives} FP={summary.false_positives} FN={summary.false_negatives} '
                f'sensitivity={summary.sensitivity} precision={summary.precision}'
            )
            row = {INPUT_COLUMN: filename}
            row.update(summary.to_dict())
            rows.append(row)
    summary_file = os.path.join(output, SUMMARY_FILENAME)
    output_tabbed_file(rows, summary_file, header=[INPUT_COLUMN] + SUMMARY_COLUMNS)
    generate_complete_stamp(output, start_time)
    return summary_file
