"""Cut list compiler: user cuts in, disjoint keep segments out."""

from clipsync.models import CutSegment, KeepSegment, TimeRange


def format_time(seconds: float) -> str:
    """Format seconds as ``M:SS`` (minutes are not wrapped into hours)."""
    total = int(max(seconds, 0.0))
    return f"{total // 60}:{total % 60:02d}"


def merge_cuts(cuts: list[CutSegment]) -> list[TimeRange]:
    """Sort cuts by start and merge the ones that overlap.

    Cuts that only touch (``next.start == current.end``) stay separate.
    The input list and its items are left untouched.
    """
    if not cuts:
        return []

    ordered = sorted(cuts, key=lambda c: c.start)
    merged: list[TimeRange] = []
    current = TimeRange(start=ordered[0].start, end=ordered[0].end)

    for cut in ordered[1:]:
        if cut.start < current.end:
            current = TimeRange(start=current.start, end=max(current.end, cut.end))
        else:
            merged.append(current)
            current = TimeRange(start=cut.start, end=cut.end)
    merged.append(current)
    return merged


def derive_keep_segments(
    merged_cuts: list[TimeRange], total_duration: float
) -> list[KeepSegment]:
    """Complement of ``merged_cuts`` over ``[0, total_duration)``.

    Zero-length gaps are dropped, so touching cuts leave nothing between them.
    """
    segments: list[KeepSegment] = []
    cursor = 0.0

    for cut in merged_cuts:
        if cut.start > cursor:
            segments.append(KeepSegment(start=cursor, end=min(cut.start, total_duration)))
        cursor = max(cursor, cut.end)
        if cursor >= total_duration:
            break

    if cursor < total_duration:
        segments.append(KeepSegment(start=cursor, end=total_duration))

    return [s for s in segments if s.end > s.start]


def get_keep_segments(cuts: list[CutSegment], total_duration: float) -> list[KeepSegment]:
    """Convert a list of cuts (regions to remove) into regions to keep."""
    return derive_keep_segments(merge_cuts(cuts), float(total_duration))


def kept_duration(segments: list[KeepSegment]) -> float:
    return sum(s.duration for s in segments)
