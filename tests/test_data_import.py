"""
Tests for microarray_toolkit.data_import module
"""

import os

import numpy as np
import pandas as pd
import pytest

from microarray_toolkit.data_import import (
    load_targets,
    sample_name_from_file,
    read_intensity_file,
    read_intensity_files,
    load_expression_matrix,
    clean_sample_names,
    align_expression_to_targets,
)
from microarray_toolkit.validation import SampleMatchingError


class TestSampleNameFromFile:
    """Sample names derived from array file names"""

    def test_strips_known_extensions(self):
        assert sample_name_from_file("high10-1.CEL") == "high10-1"
        assert sample_name_from_file("data/low48-2.csv") == "low48-2"
        assert sample_name_from_file("low10-1.cel.gz") == "low10-1"

    def test_unknown_extension_kept(self):
        assert sample_name_from_file("array.dat") == "array.dat"


class TestLoadTargets:
    """Test loading the targets table"""

    def test_load_targets_success(self, targets_file):
        """Tab-delimited file with FileName and factor columns"""
        targets = load_targets(targets_file)

        assert len(targets) == 8
        assert list(targets["Sample"])[:2] == ["low10-1", "low10-2"]
        assert set(targets["estrogen"]) == {"absent", "present"}
        assert set(targets["time.h"]) == {"10", "48"}

    def test_load_targets_csv(self, targets, tmp_path):
        path = tmp_path / "targets.csv"
        targets.drop(columns=["Sample"]).to_csv(path, index=False)

        loaded = load_targets(str(path))
        assert list(loaded["Sample"]) == list(targets["Sample"])

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_targets(str(tmp_path / "nope.txt"))

    def test_missing_file_column(self, tmp_path):
        path = tmp_path / "targets.txt"
        pd.DataFrame({"Name": ["a"], "estrogen": ["absent"]}).to_csv(path, sep="\t", index=False)

        with pytest.raises(ValueError, match="FileName"):
            load_targets(str(path))


class TestReadIntensityFiles:
    """Test reading probe-level intensity files"""

    def test_read_single_file(self, intensity_files):
        data_dir, targets = intensity_files
        series = read_intensity_file(os.path.join(data_dir, targets["FileName"].iloc[0]))

        assert series.index.names == ["probeset", "probe"]
        assert len(series) == 240
        assert (series > 0).all()

    def test_read_all_files(self, intensity_files, probe_data):
        data_dir, targets = intensity_files
        loaded = read_intensity_files(targets, data_dir=data_dir)

        assert list(loaded.columns) == list(targets["Sample"])
        assert loaded.shape == probe_data.shape
        np.testing.assert_allclose(
            loaded.loc[probe_data.index, "high10-1"].to_numpy(),
            probe_data["high10-1"].to_numpy(),
        )

    def test_layout_mismatch(self, intensity_files):
        data_dir, targets = intensity_files
        path = os.path.join(data_dir, targets["FileName"].iloc[3])
        array = pd.read_csv(path)
        array.iloc[:-1].to_csv(path, index=False)

        with pytest.raises(SampleMatchingError, match="probe layout"):
            read_intensity_files(targets, data_dir=data_dir)

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "bad.csv"
        pd.DataFrame({"probeset": ["a"], "value": [1.0]}).to_csv(path, index=False)

        with pytest.raises(ValueError, match="missing columns"):
            read_intensity_file(str(path))

    def test_non_numeric_intensity(self, tmp_path):
        path = tmp_path / "bad.csv"
        pd.DataFrame(
            {"probeset": ["a", "a"], "probe": ["1", "2"], "intensity": ["10", "high"]}
        ).to_csv(path, index=False)

        with pytest.raises(ValueError, match="non-numeric"):
            read_intensity_file(str(path))

    def test_duplicated_probe(self, tmp_path):
        path = tmp_path / "dup.csv"
        pd.DataFrame(
            {"probeset": ["a", "a"], "probe": ["1", "1"], "intensity": [10.0, 12.0]}
        ).to_csv(path, index=False)

        with pytest.raises(ValueError, match="duplicated"):
            read_intensity_file(str(path))


class TestLoadExpressionMatrix:
    """Test loading precomputed expression"""

    def test_load_expression(self, expression_data, tmp_path):
        path = tmp_path / "expr.csv"
        expression_data.to_csv(path)

        loaded = load_expression_matrix(str(path))
        assert loaded.index.name == "Gene"
        assert loaded.shape == expression_data.shape
        np.testing.assert_allclose(loaded.to_numpy(), expression_data.to_numpy())

    def test_non_numeric_column(self, tmp_path):
        path = tmp_path / "expr.csv"
        pd.DataFrame(
            {"Gene": ["g1", "g2"], "a": [1.0, 2.0], "note": ["x", "y"]}
        ).to_csv(path, index=False)

        with pytest.raises(ValueError, match="non-numeric"):
            load_expression_matrix(str(path))


class TestAlignExpressionToTargets:
    """Expression columns follow targets order"""

    def test_reorders_columns(self, expression_data, targets):
        shuffled = expression_data[list(reversed(expression_data.columns))]
        aligned = align_expression_to_targets(shuffled, targets)

        assert list(aligned.columns) == list(targets["Sample"])
        pd.testing.assert_frame_equal(aligned, expression_data)

    def test_matches_file_names(self, expression_data, targets):
        renamed = expression_data.rename(columns=lambda c: f"{c}.CEL")
        aligned = align_expression_to_targets(renamed, targets)

        assert list(aligned.columns) == list(targets["Sample"])

    def test_missing_sample(self, expression_data, targets):
        with pytest.raises(SampleMatchingError):
            align_expression_to_targets(expression_data.drop(columns=["high48-2"]), targets)


class TestCleanSampleNames:
    """Test sample name cleaning"""

    def test_clean_sample_names_basic(self):
        sample_columns = [
            "Experiment_high10-1_Quant",
            "Experiment_low48-2_Quant",
        ]

        result = clean_sample_names(sample_columns)

        assert result["Experiment_high10-1_Quant"] == "high10-1"
        assert result["Experiment_low48-2_Quant"] == "low48-2"

    def test_clean_sample_names_single(self):
        result = clean_sample_names(["high10-1"])
        assert result == {"high10-1": "high10-1"}
