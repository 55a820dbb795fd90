"""
CSV export of search results, in the layout spreadsheet users in France
expect: UTF-8 with BOM, ';' separated, every cell quoted.
"""

import csv
import io
from datetime import date
from typing import Any, Dict, Iterable, Optional

CSV_HEADERS = [
    "Nom",
    "Type",
    "Téléphone",
    "Email",
    "Site web",
    "Adresse",
    "Code postal",
    "Ville",
    "Région",
    "Département",
    "Horaires",
    "Latitude",
    "Longitude",
]

TYPE_LABELS = {
    "restaurant": "Restaurant",
    "bar": "Bar",
    "cafe": "Café",
    "fast_food": "Fast-food",
    "pub": "Pub",
}


def translate_type(value: Optional[str]) -> str:
    if not value:
        return ""
    return TYPE_LABELS.get(value, value)


def format_address(result: Dict[str, Any]) -> str:
    parts = [result.get("housenumber") or "", result.get("street") or ""]
    return " ".join(p for p in parts if p).strip()


def format_opening_hours(value: Optional[str]) -> str:
    if not value:
        return ""
    return " | ".join(part.strip() for part in value.split(";") if part.strip())


def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"juice-finder-export-{today.isoformat()}.csv"


def results_to_csv(results: Iterable[Dict[str, Any]]) -> str:
    """Render search result dicts (as returned by the search engine) to CSV text."""
    buffer = io.StringIO()
    buffer.write("\ufeff")
    writer = csv.writer(buffer, delimiter=";", quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for result in results:
        point = result.get("meta_geo_point") or {}
        writer.writerow([
            result.get("name") or "",
            translate_type(result.get("type")),
            result.get("phone") or "",
            result.get("email") or "",
            result.get("website") or "",
            format_address(result),
            result.get("postcode") or "",
            result.get("city") or "",
            result.get("region") or "",
            result.get("department") or "",
            format_opening_hours(result.get("opening_hours")),
            point.get("lat", ""),
            point.get("lon", ""),
        ])
    return buffer.getvalue()
