"""CSV export of solution points."""

import csv
import io
from typing import Optional, Sequence

from odesolver.models import SolutionPoint


def to_csv(points: Sequence[SolutionPoint], path: Optional[str] = None) -> str:
    """Render *points* as CSV (header from the first point's keys).

    Rows are separated by ``\\r\\n``. When *path* is given the text is also
    written there. An empty sequence yields ``""`` and writes nothing.
    """
    if not points:
        return ""
    headers = list(points[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerow(headers)
    for point in points:
        writer.writerow(["" if point.get(h) is None else repr(float(point[h]))
                         for h in headers])
    text = buffer.getvalue().rstrip("\r\n")
    if path is not None:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(text)
    return text
