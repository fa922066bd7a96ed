import csv
import io

from .errors import InvalidInput

CSV_COLUMNS = ("ipAddress", "projectName", "browser", "device", "location", "lastVisit")
FORMATS = ("json", "csv")


def export_visitors(records, fmt: str = "json"):
    """
    Dump visitor records as a list of dicts (json) or a CSV string.
    """
    if fmt not in FORMATS:
        raise InvalidInput(f"Unsupported export format: {fmt}", details={"formats": list(FORMATS)})
    rows = [record.to_dict() for record in records]
    if fmt == "json":
        return rows

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()
