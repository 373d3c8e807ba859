"""Step sequencing for quest progression."""


def validate_step_sequence(current_step_number: int, attempted_step_number: int) -> bool:
    """
    Check that a step completion is the next one in sequence.

    Args:
        current_step_number: Last step the user completed (0 before any)
        attempted_step_number: Step number being completed

    Returns:
        True only for ``current_step_number + 1``. Repeats, skips and going
        back are all rejected.
    """
    return attempted_step_number == current_step_number + 1
