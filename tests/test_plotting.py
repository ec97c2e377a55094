"""
test_plotting.py
~~~~~~~~~~~~~~~~

Tests for error history plots and network export.

The external renderer is replaced by a small shell script that records the
files it was given.
"""

import base64
import json
import pytest
import os
import stat
import sys

import numpy as np

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from stacknet.export import (
    export_learner,
    EXPORT_OK,
    EXPORT_UNSUPPORTED,
    EXPORT_IO_ERROR
)
from stacknet.history import ErrorHistory
from stacknet.learner import Learner
from stacknet.plotting import (
    plot_history,
    render_history_png,
    PLOT_IO_ERROR,
    RENDERER_NOT_FOUND
)


@pytest.fixture
def history():
    """A history with a few known samples at stride 2."""
    history = ErrorHistory(16)
    history.restore(3, 0, 2, [0.5, 0.25, 0.125])
    return history


@pytest.fixture
def fake_renderer(tmp_path):
    """Create a renderer script that copies its inputs and exits with status 3."""
    capture_dir = tmp_path / "captured"
    capture_dir.mkdir()
    script = tmp_path / "fake_gnuplot.sh"
    script.write_text(
        "#!/bin/sh\n"
        f"cp \"$1\" \"{capture_dir}/script.plot\"\n"
        f"cp \"$(dirname \"$1\")/stacknet_data.dat\" \"{capture_dir}/data.dat\"\n"
        "exit 3\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script), capture_dir


@pytest.mark.unit
class TestPlotHistory:
    """Test the external renderer interface."""

    def test_returns_renderer_status(self, history, fake_renderer, tmp_path):
        """Test that the renderer's exit status is returned."""
        renderer, _ = fake_renderer
        temp_dir = tmp_path / "plot_tmp"
        temp_dir.mkdir()

        status = plot_history(history, str(tmp_path / "out.png"), "Training Error",
                              640, 480, temp_dir=str(temp_dir), renderer=renderer)

        assert status == 3

    def test_temporary_files_removed(self, history, fake_renderer, tmp_path):
        """Test that both temporary files are deleted after rendering."""
        renderer, _ = fake_renderer
        temp_dir = tmp_path / "plot_tmp"
        temp_dir.mkdir()

        plot_history(history, str(tmp_path / "out.png"), "Training Error",
                     640, 480, temp_dir=str(temp_dir), renderer=renderer)

        assert os.listdir(temp_dir) == []

    def test_data_file(self, history, fake_renderer, tmp_path):
        """Test the two-column data written for the renderer."""
        renderer, capture_dir = fake_renderer
        plot_history(history, str(tmp_path / "out.png"), "Training Error",
                     640, 480, temp_dir=str(tmp_path), renderer=renderer)

        rows = (capture_dir / "data.dat").read_text().splitlines()
        assert rows == [
            "0    0.5000000000",
            "2    0.2500000000",
            "4    0.1250000000",
        ]

    def test_script_file(self, history, fake_renderer, tmp_path):
        """Test the renderer script settings."""
        renderer, capture_dir = fake_renderer
        output = str(tmp_path / "out.png")
        plot_history(history, output, "My Title", 640, 480,
                     temp_dir=str(tmp_path), renderer=renderer)

        script = (capture_dir / "script.plot").read_text()
        assert 'set title "My Title"' in script
        assert "set xrange [0:6]" in script
        assert "set yrange [0:0.510000]" in script
        assert "set terminal png size 640,480" in script
        assert f'set output "{output}"' in script
        assert "using 1:2 notitle with lines" in script

    def test_minimum_error_range(self, fake_renderer, tmp_path):
        """Test that the error axis never collapses below 0.01."""
        renderer, capture_dir = fake_renderer
        plot_history(ErrorHistory(16), str(tmp_path / "out.png"), "Empty",
                     100, 100, temp_dir=str(tmp_path), renderer=renderer)

        script = (capture_dir / "script.plot").read_text()
        assert "set yrange [0:0.010200]" in script

    def test_missing_temp_directory(self, history, tmp_path):
        """Test that unwritable temporary files give the I/O failure code."""
        status = plot_history(history, str(tmp_path / "out.png"), "Title",
                              640, 480, temp_dir=str(tmp_path / "missing"),
                              renderer="true")
        assert status == PLOT_IO_ERROR

    def test_renderer_not_found(self, history, tmp_path):
        """Test that a missing renderer is reported and files are cleaned up."""
        status = plot_history(history, str(tmp_path / "out.png"), "Title",
                              640, 480, temp_dir=str(tmp_path),
                              renderer=str(tmp_path / "no_such_renderer"))

        assert status == RENDERER_NOT_FOUND
        assert os.listdir(tmp_path) == []


@pytest.mark.unit
class TestRenderPng:
    """Test the in-process renderer."""

    def test_returns_png(self, history):
        """Test that the result is base64 PNG data."""
        data = base64.b64decode(render_history_png(history, "Training Error"))
        assert data[:8] == b'\x89PNG\r\n\x1a\n'

    def test_empty_history(self):
        """Test that an empty history still renders."""
        data = base64.b64decode(render_history_png(ErrorHistory(16)))
        assert data[:4] == b'\x89PNG'


@pytest.mark.unit
class TestExport:
    """Test exporting a learner's network."""

    @pytest.fixture
    def learner(self):
        return Learner(4, 3, 2, 2, [0.1, 0.1, 0.1], seed=7)

    def test_json(self, learner, tmp_path):
        """Test the JSON export."""
        path = tmp_path / "net.json"
        assert export_learner(learner, str(path)) == EXPORT_OK

        document = json.loads(path.read_text())
        assert document['architecture'] == [4, 3, 3, 2]
        assert np.allclose(document['weights'][0], learner.network.weights[0])
        assert document['training_complete'] is False

    def test_npz(self, learner, tmp_path):
        """Test the numpy archive export."""
        path = tmp_path / "net.npz"
        assert export_learner(learner, str(path)) == EXPORT_OK

        with np.load(str(path)) as archive:
            assert list(archive['architecture']) == [4, 3, 3, 2]
            assert np.array_equal(archive['weights_2'], learner.network.weights[2])
            assert np.array_equal(archive['biases_0'], learner.network.biases[0])

    def test_unsupported_extension(self, learner, tmp_path):
        """Test that unknown formats are refused."""
        assert export_learner(learner, str(tmp_path / "net.c")) == EXPORT_UNSUPPORTED

    def test_io_error(self, learner, tmp_path):
        """Test that an unwritable destination is reported."""
        path = str(tmp_path / "missing" / "net.json")
        assert export_learner(learner, path) == EXPORT_IO_ERROR
