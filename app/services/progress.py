"""Percentages derived from processed/total counters.

Rounding is half-up and done in integer arithmetic so that the same
counters always give the same percentage.
"""


def _scaled(processed: int, total: int, ceiling: int) -> int:
    if total <= 0:
        return 0
    processed = max(0, processed)
    # round(processed / total * ceiling) with ties going up
    value = (2 * processed * ceiling + total) // (2 * total)
    return max(0, min(ceiling, value))


def compute_progress(processed: int, total: int) -> int:
    return _scaled(processed, total, 100)


def compute_phase_progress(processed: int, total: int, phase_max: int) -> int:
    """Like ``compute_progress`` but scaled into ``[0, phase_max]``.

    Used by jobs whose first phase must leave visible room for a later one,
    e.g. the export fetch phase tops out at 95.
    """
    return _scaled(processed, total, phase_max)
