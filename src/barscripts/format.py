import json

from typing import Any, Dict, List, Mapping, Optional

from barscripts.mpris.properties import Properties


def timestamp(usec: Optional[int]) -> str:
    """Format a count of microseconds as HH:MM:SS."""
    if usec is None or usec < 0:
        usec = 0
    seconds = usec // 1000000
    return "%02d:%02d:%02d" % (seconds // 3600, seconds // 60 % 60, seconds % 60)


def fields(properties: Properties) -> List[str]:
    metadata = properties.metadata
    title = ""
    artist = ""
    length = None
    if metadata is not None:
        title = metadata.title or ""
        artist = ", ".join(metadata.artist or [])
        length = metadata.length
    return [
        properties.playback_status or "",
        title,
        artist,
        "%s/%s" % (timestamp(properties.position), timestamp(length)),
    ]


def as_line(properties: Properties, separator: str = " ") -> str:
    return separator.join(fields(properties))


def as_json(sources: Mapping[str, Properties]) -> str:
    doc: Dict[str, Any] = dict(
        (identity, properties.as_dict())
        for identity, properties in sorted(sources.items())
    )
    return json.dumps(doc, sort_keys=True)


def as_lines(sources: Mapping[str, Properties], separator: str = " ") -> str:
    return "\n".join(
        separator.join([identity, as_line(properties, separator)])
        for identity, properties in sorted(sources.items())
    )
