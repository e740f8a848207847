"""
Resolves the binlog segments covered by an incremental window.
"""
from typing import List, Sequence

from mysql_backup.utils.datatypes import LogWindow
from mysql_backup.utils.exceptions import SegmentNotFound, WindowUnresolved


def resolve_segments(segments: Sequence[str], window: LogWindow) -> List[str]:
    """
    Get the contiguous slice of the binlog that contains the window.
    The segment list is the one the server reports right now. It may differ from the
    list at the time of the full backup (rotation, purges).
    :param segments: ordered segment names (SHOW BINARY LOGS)
    :param window: window to resolve
    :return: segment names from the start segment to the stop segment (inclusive)
    :raises SegmentNotFound: the start segment is not part of the list
    :raises WindowUnresolved: the stop bound precedes the start or its segment
        does not follow the start segment in the list
    """
    if window.stop < window.start:
        raise WindowUnresolved(f'Window {window} ends before it starts')
    try:
        first = segments.index(window.start.segment)
    except ValueError:
        raise SegmentNotFound(window.start.segment) from None

    for i in range(first, len(segments)):
        if segments[i] == window.stop.segment:
            return list(segments[first:i + 1])
    raise WindowUnresolved(
        f'Binlog segment {window.stop.segment} does not follow {window.start.segment} '
        f'in the current segment list ({", ".join(segments)})')
