"""
plotting.py
~~~~~~~~~~~

Plots of a learner's training error history.

:func:`plot_history` writes the history and a gnuplot script to temporary
files and runs the renderer on them. The temporary file names are fixed for
a given directory and prefix, so concurrent plots must use different
directories or prefixes.

:func:`render_history_png` draws the same curve in-process with matplotlib
and returns it as base64 PNG data, for use by the API server.
"""

import os
import base64
import logging
import subprocess
from io import BytesIO
from typing import Optional

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from stacknet import settings
from stacknet.history import ErrorHistory

# Configure module logger
logger = logging.getLogger(__name__)

# Returned when a temporary file could not be written
PLOT_IO_ERROR = -1

# Exit status used when the renderer executable cannot be found
RENDERER_NOT_FOUND = 127

# Smallest upper bound of the error axis
MIN_ERROR_RANGE = 0.01


def _error_range(history: ErrorHistory) -> float:
    samples = history.samples()
    max_value = MIN_ERROR_RANGE
    if len(samples) > 0:
        max_value = max(max_value, float(samples.max()))
    return max_value


def write_history_data(history: ErrorHistory, path: str) -> None:
    """Write the history as two columns: time step and error."""
    with open(path, 'w') as fp:
        for time_step, value in zip(history.time_steps(), history.samples()):
            fp.write(f"{time_step}    {value:.10f}\n")


def write_plot_script(
    history: ErrorHistory,
    data_filename: str,
    script_filename: str,
    filename: str,
    title: str,
    image_width: int,
    image_height: int
) -> None:
    """Write a gnuplot script rendering ``data_filename`` to a PNG image."""
    max_value = _error_range(history)
    with open(script_filename, 'w') as fp:
        fp.write("reset\n")
        fp.write(f"set title \"{title}\"\n")
        fp.write(f"set xrange [0:{history.index * history.step}]\n")
        fp.write(f"set yrange [0:{max_value * 102 / 100:f}]\n")
        fp.write("set lmargin 9\n")
        fp.write("set rmargin 2\n")
        fp.write("set xlabel \"Time Step\"\n")
        fp.write("set ylabel \"Training Error\"\n")
        fp.write("set grid\n")
        fp.write("set key right top\n")
        fp.write(f"set terminal png size {image_width},{image_height}\n")
        fp.write(f"set output \"{filename}\"\n")
        fp.write(f"plot \"{data_filename}\" using 1:2 notitle with lines\n")


def plot_history(
    history: ErrorHistory,
    filename: str,
    title: str,
    image_width: int,
    image_height: int,
    temp_dir: Optional[str] = None,
    renderer: Optional[str] = None,
    prefix: str = 'stacknet'
) -> int:
    """
    Plot the training error history to a PNG image with an external renderer.

    Args:
        history: Error history to plot
        filename: Path of the image to create
        title: Title of the graph
        image_width: Width of the image in pixels
        image_height: Height of the image in pixels
        temp_dir: Directory for the temporary data and script files
        renderer: Renderer executable, invoked with the script path
        prefix: Prefix of the temporary file names

    Returns:
        int: The renderer's exit status, or PLOT_IO_ERROR if a temporary
        file could not be written
    """
    temp_dir = temp_dir or settings.TEMP_DIRECTORY
    renderer = renderer or settings.PLOT_RENDERER
    data_filename = os.path.join(temp_dir, f"{prefix}_data.dat")
    script_filename = os.path.join(temp_dir, f"{prefix}_data.plot")

    try:
        try:
            write_history_data(history, data_filename)
            write_plot_script(history, data_filename, script_filename,
                              filename, title, image_width, image_height)
        except OSError as e:
            logger.error(f"Could not write plot files in '{temp_dir}': {e}")
            return PLOT_IO_ERROR

        try:
            result = subprocess.run([renderer, script_filename])
        except OSError as e:
            logger.error(f"Could not run plot renderer '{renderer}': {e}")
            return RENDERER_NOT_FOUND

        if result.returncode != 0:
            logger.warning(
                f"Plot renderer '{renderer}' exited with status {result.returncode}"
            )
        return result.returncode

    finally:
        for path in (data_filename, script_filename):
            if os.path.exists(path):
                os.remove(path)


def render_history_png(
    history: ErrorHistory,
    title: str = 'Training Error',
    image_width: int = 1024,
    image_height: int = 480
) -> str:
    """
    Render the training error history in-process.

    Returns:
        Base64-encoded PNG image string
    """
    dpi = 100
    fig = plt.figure(figsize=(image_width / dpi, image_height / dpi), dpi=dpi)
    ax = fig.add_subplot(111)
    ax.plot(history.time_steps(), history.samples())
    ax.set_title(title)
    ax.set_xlabel('Time Step')
    ax.set_ylabel('Training Error')
    ax.set_xlim(0, max(history.index * history.step, 1))
    ax.set_ylim(0, _error_range(history) * 1.02)
    ax.grid(True)

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    fig.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close(fig)

    return img_base64
