import os
import time
from typing import Dict, List

from ..util import generate_complete_stamp, logger, mkdirp
from .model import learn_orientation_model, read_f1r2_counts

MODEL_FILENAME = 'orientation_model.tsv'


def main(inputs: List[str], output: str, config: Dict, start_time=int(time.time())) -> str:
    """
    Args:
        inputs: the orientation count tables written by the call step
        output: path to the output directory
        config: the validated run config

    Returns:
        the path to the model file
    """
    mkdirp(output)
    counts = read_f1r2_counts(*inputs)
    logger.info(f'learning the orientation model from {len(counts)} count rows')
    model = learn_orientation_model(
        counts,
        min_depth=config['orientation.min_depth'],
        max_depth=config['orientation.max_depth'],
        min_alt_sites=config['orientation.min_alt_sites'],
        convergence_threshold=config['orientation.convergence_threshold'],
        max_iterations=config['orientation.max_iterations'],
    )
    model_file = os.path.join(output, MODEL_FILENAME)
    model.write(model_file)
    generate_complete_stamp(output, start_time)
    return model_file
