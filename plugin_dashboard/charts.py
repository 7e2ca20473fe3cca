#!/usr/bin/env python3
"""
Normalization of bStats chart payloads.

bStats returns chart data in several loosely typed JSON shapes. Payloads are
first classified into a PayloadShape, then converted by the converter
registered for that shape into one of two canonical forms:

* line series: ``[(timestamp, value), ...]`` in the order received
* pie entries: ``[PieEntry(label, value, drilldown), ...]``

Every emitted value is a finite number; pie entries are strictly positive.
"""

import math
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .models import ChartMetadata, PieEntry

MAX_PIE_SLICES = 20
OTHER_THRESHOLD_DIVISOR = 200
OTHER_LABEL = "Other"

SERVER_PLAYER_MARKERS = ("server", "servers", "players")
LOCATION_MARKERS = ("location", "country", "geo")


class PayloadShape(Enum):
    EMPTY = "empty"
    PAIRS = "pairs"                                # [[ts_or_label, value], ...]
    NAMED_POINTS = "named_points"                  # [{"name": .., "y"|"value": ..}, ...]
    SNAPSHOTS = "snapshots"                        # [..., {category: value}]
    SERIES_WITH_DRILLDOWN = "series_with_drilldown"  # {"seriesData": [...], "drilldownData": {...}}
    CATEGORY_MAP = "category_map"                  # {category: scalar | object | timeseries}


class ChartKind(Enum):
    LINE = "line"
    PIE = "pie"
    LOCATION = "location"
    TABLE = "table"


def to_number(value: Any) -> Optional[float]:
    """Coerce a JSON scalar to a finite float, or None when it is not a number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _leaf(value: Any) -> Optional[float]:
    # nested leaves must be usable as display values on their own
    number = to_number(value)
    return number if number is not None and number >= 0 else None


def _sum_leaves(obj: Mapping) -> float:
    return sum(n for n in (_leaf(v) for v in obj.values()) if n is not None)


def _point_value(point: Any) -> Optional[float]:
    """Numeric value of one element of a nested timeseries."""
    if isinstance(point, list):
        return _leaf(point[1]) if len(point) >= 2 else None
    if isinstance(point, dict):
        return _leaf(point.get("y", point.get("value")))
    return _leaf(point)


def _last_point_value(series: List) -> Optional[float]:
    for point in reversed(series):
        value = _point_value(point)
        if value is not None:
            return value
    return None


def reduce_value(value: Any) -> Tuple[float, Optional[Dict[str, float]]]:
    """
    Reduce one raw chart entry to a total and an optional drilldown.

    Scalars are returned as-is (NaN when not numeric). Lists are summed over
    their numeric leaves. Objects are summed per key, and the per-key values
    are kept as the drilldown when at least one is non-zero.
    """
    if isinstance(value, list):
        return _reduce_list(value), None
    if isinstance(value, dict):
        return _reduce_object(value)
    number = to_number(value)
    return (number if number is not None else math.nan), None


def _reduce_list(items: List) -> float:
    total = 0.0
    for item in items:
        if isinstance(item, list) and len(item) >= 2:
            inner = item[1]
            if isinstance(inner, list):
                n = _leaf(inner[-1]) if len(inner) >= 2 else None
            elif isinstance(inner, dict):
                n = _sum_leaves(inner)
            else:
                n = _leaf(inner)
        elif isinstance(item, dict):
            if "y" in item or "value" in item:
                n = _leaf(item.get("y", item.get("value")))
            else:
                n = _sum_leaves(item)
        else:
            n = _leaf(item)
        if n is not None:
            total += n
    return total


def _reduce_object(obj: Mapping) -> Tuple[float, Optional[Dict[str, float]]]:
    drill = {}
    for key, inner in obj.items():
        if isinstance(inner, list):
            n = _last_nonzero_snapshot(inner)
        elif isinstance(inner, dict):
            n = _sum_leaves(inner) or None
        else:
            n = _leaf(inner)
        if n is not None:
            drill[str(key)] = n
    total = sum(drill.values())
    if not any(drill.values()):
        return total, None
    return total, drill


def _last_nonzero_snapshot(series: List) -> Optional[float]:
    for point in reversed(series):
        if isinstance(point, list) and len(point) >= 2:
            n = _leaf(point[1])
        elif isinstance(point, dict):
            n = _sum_leaves(point) or None
        else:
            n = _leaf(point)
        if n is not None:
            return n
    return None


def classify_payload(raw: Any) -> PayloadShape:
    """Decide which of the known bStats payload shapes raw is."""
    if isinstance(raw, list) and raw:
        first = raw[0]
        if isinstance(first, dict) and "name" in first and ("y" in first or "value" in first):
            return PayloadShape.NAMED_POINTS
        if any(isinstance(it, list) and len(it) >= 2 for it in raw):
            return PayloadShape.PAIRS
        if isinstance(raw[-1], dict):
            return PayloadShape.SNAPSHOTS
        return PayloadShape.EMPTY
    if isinstance(raw, dict) and raw:
        if isinstance(raw.get("seriesData"), list):
            return PayloadShape.SERIES_WITH_DRILLDOWN
        return PayloadShape.CATEGORY_MAP
    return PayloadShape.EMPTY


def _empty_items(raw: Any) -> List[PieEntry]:
    return []


def _pairs_items(raw: List) -> List[PieEntry]:
    items = []
    for pair in raw:
        if isinstance(pair, list) and len(pair) >= 2:
            value, drill = reduce_value(pair[1])
            items.append(PieEntry(str(pair[0]), value, drill))
    return items


def _named_point_items(raw: List) -> List[PieEntry]:
    items = []
    for point in raw:
        if isinstance(point, dict) and "name" in point:
            value = to_number(point.get("y", point.get("value", 0)))
            items.append(PieEntry(str(point["name"]), value if value is not None else math.nan))
    return items


def _category_map_items(raw: Mapping) -> List[PieEntry]:
    items = []
    for label, value in raw.items():
        total, drill = reduce_value(value)
        items.append(PieEntry(str(label), total, drill))
    return items


def _snapshot_items(raw: List) -> List[PieEntry]:
    return _category_map_items(raw[-1])


def _series_value(value: Any) -> Tuple[float, Optional[Dict[str, float]]]:
    if isinstance(value, list):
        last = _last_point_value(value)
        return (last if last is not None else 0.0), None
    if isinstance(value, dict):
        return reduce_value(value)
    number = to_number(value)
    return (number if number is not None else math.nan), None


def _series_items(raw: Mapping) -> List[PieEntry]:
    items = []
    for entry in raw["seriesData"]:
        if isinstance(entry, list) and len(entry) >= 2:
            value, drill = _series_value(entry[1])
            items.append(PieEntry(str(entry[0]), value, drill))
        elif isinstance(entry, dict) and "name" in entry and ("y" in entry or "value" in entry):
            value = to_number(entry.get("y", entry.get("value")))
            items.append(PieEntry(str(entry["name"]), value if value is not None else math.nan))

    drill_map = raw.get("drilldownData") or raw.get("drilldown") or raw.get("drilldownMap")
    if isinstance(drill_map, dict):
        for item in items:
            detail = drill_map.get(item.label)
            if not isinstance(detail, dict):
                continue
            total, drill = reduce_value(detail)
            item.drilldown = drill or {k: n for k, n in ((str(k), _leaf(v)) for k, v in detail.items()) if n is not None}
            if math.isnan(item.value) or item.value == 0:
                item.value = total
    return items


CONVERTERS: Dict[PayloadShape, Callable[[Any], List[PieEntry]]] = {
    PayloadShape.EMPTY: _empty_items,
    PayloadShape.PAIRS: _pairs_items,
    PayloadShape.NAMED_POINTS: _named_point_items,
    PayloadShape.SNAPSHOTS: _snapshot_items,
    PayloadShape.SERIES_WITH_DRILLDOWN: _series_items,
    PayloadShape.CATEGORY_MAP: _category_map_items,
}


def parse_pie_items(raw: Any) -> List[PieEntry]:
    """Convert raw chart data into unfiltered pie entries."""
    return CONVERTERS[classify_payload(raw)](raw)


def line_points(raw: Any) -> List[Tuple[float, float]]:
    """Return the (timestamp, value) pairs of a line payload, or [] for other shapes."""
    if classify_payload(raw) is not PayloadShape.PAIRS or not isinstance(raw[0], list):
        return []
    points = []
    for pair in raw:
        if not isinstance(pair, list) or len(pair) < 2:
            continue
        timestamp, value = _leaf(pair[0]), _leaf(pair[1])
        if timestamp is not None and value is not None:
            points.append((timestamp, value))
    return points


def latest_value(points: List[Tuple[float, float]]) -> Optional[float]:
    return points[-1][1] if points else None


def bucket_small_slices(entries: List[PieEntry]) -> List[PieEntry]:
    """Merge slices below total/200 into an 'Other' slice when there are more than 20."""
    if len(entries) <= MAX_PIE_SLICES:
        return list(entries)

    total = sum(e.value for e in entries)
    threshold = total / OTHER_THRESHOLD_DIVISOR
    kept = []
    other_value = 0.0
    other_drill: Dict[str, float] = {}
    for entry in entries:
        if entry.value >= threshold:
            kept.append(entry)
            continue
        other_value += entry.value
        for key, value in (entry.drilldown or {}).items():
            other_drill[key] = other_drill.get(key, 0.0) + value

    if other_value > 0:
        kept.append(PieEntry(OTHER_LABEL, other_value, other_drill or None))
    return kept


def pie_entries(raw: Any) -> List[PieEntry]:
    """Pie entries ready for rendering: positive values only, small slices bucketed, largest first."""
    items = [
        e for e in parse_pie_items(raw)
        if isinstance(e.value, (int, float)) and math.isfinite(e.value) and e.value > 0
    ]
    items = bucket_small_slices(items)
    items.sort(key=lambda e: e.value, reverse=True)
    return items


def is_location_chart(chart_id: str, meta: Optional[ChartMetadata]) -> bool:
    chart = chart_id.lower()
    title = (meta.title if meta else "").lower()
    custom = ((meta.id_custom if meta else None) or "").lower()
    if meta and meta.type == "simple_map":
        return True
    return "location" in chart or "location" in custom or any(m in title for m in LOCATION_MARKERS)


def classify_chart(chart_id: str, meta: Optional[ChartMetadata], pie_items: List[PieEntry]) -> ChartKind:
    """
    Best-effort choice of how to render a chart, based on its id and title.

    Server and player charts are line charts unless they are the server
    software breakdown. Location charts are reported separately.
    """
    chart = chart_id.lower()
    title = (meta.title if meta else chart_id).lower()
    custom = ((meta.id_custom if meta else None) or "").lower()
    type_tag = (meta.type if meta else "").lower()

    is_server_or_players = any(m in chart for m in SERVER_PLAYER_MARKERS) or "server" in title or "player" in title
    is_server_software = "serversoftware" in chart or "server software" in title or "serversoftware" in custom
    is_pie_type = "pie" in type_tag

    if is_location_chart(chart_id, meta):
        return ChartKind.LOCATION
    if (not is_server_or_players or is_server_software) and (pie_items or is_server_software or is_pie_type):
        return ChartKind.PIE
    if is_server_or_players:
        return ChartKind.LINE
    return ChartKind.TABLE


def default_chart_id(charts: Mapping[str, ChartMetadata]) -> Optional[str]:
    """The chart flagged as default, else the first line chart, else the first chart."""
    for chart_id, meta in charts.items():
        if meta.is_default:
            return chart_id
    for chart_id, meta in charts.items():
        if "line" in meta.type:
            return chart_id
    return next(iter(charts), None)
