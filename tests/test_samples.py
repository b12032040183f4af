"""Tests for indicator-string sample selection and design matrices."""

import numpy as np
import pandas as pd
import pytest

from tumor_normal_dge.samples import (
    SampleSelectionError,
    apply_selection,
    group_design,
    paired_design,
    parse_indicator
)


CODES = {"0": "normal", "1": "tumor"}


class TestParseIndicator:
    """Tests for indicator string decoding."""

    def test_groups_and_exclusions(self):
        """Test positions, groups and counts with excluded samples."""
        selection = parse_indicator("00X11X1", CODES)

        assert selection.positions == [0, 1, 3, 4, 6]
        assert selection.groups == ["normal", "normal", "tumor", "tumor", "tumor"]
        assert selection.n_total == 7
        assert selection.n_excluded == 2
        assert selection.group_counts() == {"tumor": 3, "normal": 2}

    def test_custom_codes(self):
        """Test letter codes in place of digits."""
        selection = parse_indicator("NTNT", {"N": "normal", "T": "tumor"})

        assert selection.groups == ["normal", "tumor", "normal", "tumor"]

    def test_unknown_code(self):
        """Test error naming the position of an unknown code."""
        with pytest.raises(SampleSelectionError, match="position 3"):
            parse_indicator("012", CODES)

    def test_everything_excluded(self):
        """Test error when no sample is kept."""
        with pytest.raises(SampleSelectionError, match="every sample"):
            parse_indicator("XXX", CODES)


class TestApplySelection:
    """Tests for column selection by indicator."""

    def test_keeps_columns_in_order(self, raw_expression):
        """Test that kept columns stay in series order."""
        selection = parse_indicator("0000X1111", CODES)

        selected = apply_selection(raw_expression, selection)

        assert selected.shape == (raw_expression.shape[0], 8)
        assert "GSM1004" not in selected.columns
        assert list(selected.columns[:2]) == ["GSM1000", "GSM1001"]

    def test_length_mismatch(self, raw_expression):
        """Test error when indicator and sample counts differ."""
        selection = parse_indicator("0011", CODES)

        with pytest.raises(SampleSelectionError, match="4 characters"):
            apply_selection(raw_expression, selection)


class TestGroupDesign:
    """Tests for the cell-means design."""

    def test_cell_means(self):
        """Test one indicator column per group."""
        design = group_design(["normal", "tumor", "tumor"], samples=["a", "b", "c"])

        assert list(design.columns) == ["normal", "tumor"]
        assert list(design.index) == ["a", "b", "c"]
        np.testing.assert_array_equal(design.to_numpy(), [[1, 0], [0, 1], [0, 1]])

    def test_level_order(self):
        """Test that explicit levels set the column order."""
        design = group_design(["normal", "tumor"], levels=["tumor", "normal"])

        assert list(design.columns) == ["tumor", "normal"]

    def test_empty_level(self):
        """Test error on a level without samples."""
        with pytest.raises(SampleSelectionError, match="No samples"):
            group_design(["normal", "normal"], levels=["normal", "tumor"])

    def test_unknown_group(self):
        """Test error on a group outside the levels."""
        with pytest.raises(SampleSelectionError):
            group_design(["normal", "stroma"], levels=["normal", "tumor"])


class TestPairedDesign:
    """Tests for the patient plus tissue design."""

    def test_patient_and_tissue_columns(self):
        """Test column names and values for three patients."""
        design = paired_design(
            ["8", "8", "33", "33", "51", "51"],
            ["normal", "tumor"] * 3,
            reference_tissue="normal"
        )

        assert list(design.columns) == ["(Intercept)", "patient33", "patient51", "tissuetumor"]
        expected = np.array([
            [1, 0, 0, 0],
            [1, 0, 0, 1],
            [1, 1, 0, 0],
            [1, 1, 0, 1],
            [1, 0, 1, 0],
            [1, 0, 1, 1],
        ])
        np.testing.assert_array_equal(design.to_numpy(), expected)

    def test_full_rank(self):
        """Test that the design has full column rank."""
        design = paired_design(["1", "1", "2", "2", "3", "3"], ["normal", "tumor"] * 3, "normal")

        assert np.linalg.matrix_rank(design.to_numpy()) == design.shape[1]

    def test_unpaired_patient(self):
        """Test error naming a patient without both tissues."""
        with pytest.raises(SampleSelectionError, match="51"):
            paired_design(["8", "8", "51"], ["normal", "tumor", "tumor"], "normal")

    def test_missing_reference(self):
        """Test error when the reference tissue is absent."""
        with pytest.raises(SampleSelectionError, match="two tissues"):
            paired_design(["8", "8"], ["stroma", "tumor"], "normal")

    def test_sample_index(self):
        """Test that sample names become the row index."""
        design = paired_design(["8", "8"], ["normal", "tumor"], "normal", samples=["8N", "8T"])

        assert isinstance(design, pd.DataFrame)
        assert list(design.index) == ["8N", "8T"]
