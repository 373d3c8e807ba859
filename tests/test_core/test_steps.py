"""Tests for step sequencing."""

import pytest

from wayfarer.core.steps import validate_step_sequence


class TestValidateStepSequence:
    """Test next-step validation."""

    @pytest.mark.parametrize("current", [0, 1, 2, 7])
    def test_next_step_accepted(self, current):
        """Test the step right after the last completed one is accepted."""
        assert validate_step_sequence(current, current + 1) is True

    @pytest.mark.parametrize(
        "current,attempted",
        [(0, 0), (1, 1), (1, 3), (2, 1), (0, 2), (3, -1)],
    )
    def test_everything_else_rejected(self, current, attempted):
        """Test repeats, skips and going back are rejected."""
        assert validate_step_sequence(current, attempted) is False
