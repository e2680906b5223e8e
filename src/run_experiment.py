"""Face Perception Experiments - Entry Point

This module is the application entry for the face experiments. It is responsible for:
- Selecting the experiment variant (command-line argument, or a PsychoPy dialog)
- Opening the session log file in the `data/` folder
- Loading configuration and delegating the session flow to `experiment_task.FaceExperimentTask`

Variants (defined in `configs/sequence.json`):
- attention: single faces at two sizes; race and smile questions.
- memory: grids of 8 faces; count faces per race or per expression.
- traits: single faces rated on trustworthy / competent / attractive / friendly with confidence.

Every session checks the display first (fullscreen, 100% scaling). A scaling change during
practice shows a warning; during the main block it ends the session.

Data output: the session payload is posted to the export endpoint in `sequence.json` and a
local CSV + JSON copy is written to `data/`.

Debug mode: set `"debug_mode": true` in `configs/layout.json` or pass `--debug`.
Usage: python run_experiment.py [attention|memory|traits] [--debug]
"""
import os
import sys
from datetime import datetime

from psychopy import gui, logging

from config_loader import get_output_dir, load_layout, load_sequence
from experiment_task import FaceExperimentTask


def choose_experiment(sequence, argv):
    """Pick the experiment variant from argv, else ask via dialog.

    Returns:
        str | None: Experiment name, None if cancelled
    """
    experiments = sorted(sequence.get('experiments', {}))
    for arg in argv:
        if arg in experiments:
            return arg
    default = sequence.get('default_experiment', experiments[0] if experiments else '')
    choice = {'experiment': [default] + [e for e in experiments if e != default]}
    dlg = gui.DlgFromDict(choice, title='Face experiments')
    if not dlg.OK:
        return None
    return choice['experiment']


def open_log(experiment):
    out_dir = get_output_dir()
    os.makedirs(out_dir, exist_ok=True)
    ts = datetime.now().strftime('%Y%m%d_%H%M%S')
    path = os.path.join(out_dir, f'{experiment}_{ts}.log')
    logging.LogFile(path, level=logging.INFO, filemode='w')
    logging.console.setLevel(logging.WARNING)
    return path


def main(argv=None):
    """Main entry point for the face experiments."""
    argv = sys.argv[1:] if argv is None else argv
    sequence = load_sequence()
    layout = load_layout()

    experiment = choose_experiment(sequence, argv)
    if experiment is None:
        return

    open_log(experiment)
    task = FaceExperimentTask(sequence, layout, experiment, debug_mode='--debug' in argv)
    task.run()
    logging.flush()


if __name__ == '__main__':
    main()
