"""
Decoding of MPRIS player property bags into typed snapshots.

Players are sloppy about the types they put on the bus.  Firefox sends
``mpris:length`` as int64 while Spotify sends uint64, Chromium declares
``Shuffle`` as a double, and some players send a single artist as a bare
string.  The decoder coerces wherever the conversion is lossless and drops
the field (with a warning) otherwise.  Only the playback status and the
track id are important enough to reject a whole player over.
"""

import logging

from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
)

from barscripts.mpris.errors import MalformedSource, PartialDecodeWarning


_LOGGER = logging.getLogger(__name__)

PLAYER_INTERFACE = "org.mpris.MediaPlayer2.Player"

STATUS_PLAYING = "Playing"
STATUS_PAUSED = "Paused"
STATUS_STOPPED = "Stopped"
ALL_STATUSES = (STATUS_PLAYING, STATUS_PAUSED, STATUS_STOPPED)

LOOP_NONE = "None"
LOOP_TRACK = "Track"
LOOP_PLAYLIST = "Playlist"
ALL_LOOP_STATUSES = (LOOP_NONE, LOOP_TRACK, LOOP_PLAYLIST)

PROP_PLAYBACKSTATUS = "PlaybackStatus"
PROP_LOOPSTATUS = "LoopStatus"
PROP_RATE = "Rate"
PROP_MINIMUM_RATE = "MinimumRate"
PROP_MAXIMUM_RATE = "MaximumRate"
PROP_SHUFFLE = "Shuffle"
PROP_METADATA = "Metadata"
PROP_VOLUME = "Volume"
PROP_POSITION = "Position"

ALL_CAN_PROPS = (
    "CanGoNext",
    "CanGoPrevious",
    "CanPlay",
    "CanPause",
    "CanSeek",
    "CanControl",
)

REQUIRED_PROPS = (PROP_PLAYBACKSTATUS, PROP_METADATA)

META_TRACKID = "mpris:trackid"
META_LENGTH = "mpris:length"
META_ART_URL = "mpris:artUrl"
META_ALBUM = "xesam:album"
META_ALBUM_ARTIST = "xesam:albumArtist"
META_ARTIST = "xesam:artist"
META_AS_TEXT = "xesam:asText"
META_AUDIO_BPM = "xesam:audioBPM"
META_AUTO_RATING = "xesam:autoRating"
META_COMMENT = "xesam:comment"
META_COMPOSER = "xesam:composer"
META_CONTENT_CREATED = "xesam:contentCreated"
META_DISC_NUMBER = "xesam:discNumber"
META_FIRST_USED = "xesam:firstUsed"
META_GENRE = "xesam:genre"
META_LAST_USED = "xesam:lastUsed"
META_LYRICIST = "xesam:lyricist"
META_TITLE = "xesam:title"
META_TRACK_NUMBER = "xesam:trackNumber"
META_URL = "xesam:url"
META_USE_COUNT = "xesam:useCount"
META_USER_RATING = "xesam:userRating"


Coercer = Callable[[Any], Any]


def _integer(value: Any, bits: int) -> int:
    if isinstance(value, bool):
        raise ValueError("expected an integer, not a boolean")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("expected an integer")
        value = int(value)
    if not isinstance(value, int):
        raise ValueError("expected an integer")
    low = -(1 << (bits - 1))
    high = (1 << (bits - 1)) - 1
    if high < value < (1 << bits):
        # Sent as the unsigned type of the same width.
        value -= 1 << bits
    if not low <= value <= high:
        raise ValueError("integer out of range for %d bits" % bits)
    return value


def _int64(value: Any) -> int:
    return _integer(value, 64)


def _int32(value: Any) -> int:
    return _integer(value, 32)


def _double(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("expected a number, not a boolean")
    if isinstance(value, (int, float)):
        return float(value)
    raise ValueError("expected a number")


def _boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    raise ValueError("expected a boolean")


def _string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("expected a string")
    return value


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(
        isinstance(v, str) for v in value
    ):
        return list(value)
    raise ValueError("expected a list of strings")


def _one_of(*choices: str) -> Coercer:
    def coerce(value: Any) -> str:
        if value not in choices:
            raise ValueError("expected one of %s" % ", ".join(choices))
        return value

    return coerce


def _non_negative(coerce: Coercer) -> Coercer:
    def inner(value: Any) -> Any:
        value = coerce(value)
        if value < 0:
            raise ValueError("must not be negative")
        return value

    return inner


METADATA_FIELDS: Dict[str, Coercer] = {
    META_TRACKID: _string,
    META_LENGTH: _int64,
    META_ART_URL: _string,
    META_ALBUM: _string,
    META_ALBUM_ARTIST: _string_list,
    META_ARTIST: _string_list,
    META_AS_TEXT: _string,
    META_AUDIO_BPM: _int32,
    META_AUTO_RATING: _double,
    META_COMMENT: _string_list,
    META_COMPOSER: _string_list,
    META_CONTENT_CREATED: _string,
    META_DISC_NUMBER: _int32,
    META_FIRST_USED: _string,
    META_GENRE: _string_list,
    META_LAST_USED: _string,
    META_LYRICIST: _string_list,
    META_TITLE: _string,
    META_TRACK_NUMBER: _int32,
    META_URL: _string,
    META_USE_COUNT: _int32,
    META_USER_RATING: _double,
}

PROPERTY_FIELDS: Dict[str, Coercer] = {
    PROP_PLAYBACKSTATUS: _one_of(*ALL_STATUSES),
    PROP_LOOPSTATUS: _one_of(*ALL_LOOP_STATUSES),
    PROP_RATE: _non_negative(_double),
    PROP_MINIMUM_RATE: _non_negative(_double),
    PROP_MAXIMUM_RATE: _non_negative(_double),
    PROP_SHUFFLE: _boolean,
    PROP_VOLUME: _non_negative(_double),
    PROP_POSITION: _int64,
}
PROPERTY_FIELDS.update(dict((prop, _boolean) for prop in ALL_CAN_PROPS))


def _field(key: str, doc: str) -> Any:
    return property(lambda self: self.get(key), doc=doc)


class Metadata(object):
    """
    Track metadata.  The track id is always present; every other field
    may be absent, in which case its accessor returns None.
    """

    def __init__(self, fields: Mapping[str, Any]) -> None:
        if META_TRACKID not in fields:
            raise MalformedSource("metadata without %s" % META_TRACKID)
        self._fields = dict(fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return "<Metadata %r>" % self._fields

    def get(self, key: str) -> Any:
        return self._fields.get(key)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._fields)

    @property
    def trackid(self) -> str:
        return str(self._fields[META_TRACKID])

    length = _field(META_LENGTH, "Duration of the track in microseconds.")
    art_url = _field(META_ART_URL, "Location of an image for the track.")
    album = _field(META_ALBUM, "Album name.")
    album_artist = _field(META_ALBUM_ARTIST, "The album artist(s).")
    artist = _field(META_ARTIST, "The track artist(s).")
    as_text = _field(META_AS_TEXT, "The track lyrics.")
    audio_bpm = _field(META_AUDIO_BPM, "Beats per minute.")
    auto_rating = _field(META_AUTO_RATING, "Generated rating, 0.0 to 1.0.")
    comment = _field(META_COMMENT, "Freeform comment(s).")
    composer = _field(META_COMPOSER, "The composer(s) of the track.")
    content_created = _field(META_CONTENT_CREATED, "When it was created.")
    disc_number = _field(META_DISC_NUMBER, "Disc number on the album.")
    first_used = _field(META_FIRST_USED, "When it was first played.")
    genre = _field(META_GENRE, "The genre(s) of the track.")
    last_used = _field(META_LAST_USED, "When it was last played.")
    lyricist = _field(META_LYRICIST, "The lyricist(s) of the track.")
    title = _field(META_TITLE, "The track title.")
    track_number = _field(META_TRACK_NUMBER, "Track number on the disc.")
    url = _field(META_URL, "Location of the media file.")
    use_count = _field(META_USE_COUNT, "Number of times played.")
    user_rating = _field(META_USER_RATING, "User rating, 0.0 to 1.0.")


class Properties(object):
    """
    An immutable snapshot of the player properties of one source.

    Only the properties the source actually reported are present; an
    absent property reads as None.  Presence matters: a missing Rate is
    not the same thing as a Rate of 1.0.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Properties):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        return "<Properties %r>" % self._values

    def get(self, key: str) -> Any:
        return self._values.get(key)

    def keys(self) -> List[str]:
        return list(self._values)

    def merge(
        self,
        delta: "Properties",
        invalidated: Iterable[str] = (),
    ) -> "Properties":
        values = dict(self._values)
        for key in invalidated:
            values.pop(key, None)
        values.update(delta._values)
        return Properties(values)

    def as_dict(self) -> Dict[str, Any]:
        d = dict(self._values)
        if PROP_METADATA in d:
            d[PROP_METADATA] = d[PROP_METADATA].as_dict()
        return d

    playback_status = _field(PROP_PLAYBACKSTATUS, "Playing, Paused or Stopped.")
    loop_status = _field(PROP_LOOPSTATUS, "None, Track or Playlist.")
    rate = _field(PROP_RATE, "Playback rate.")
    minimum_rate = _field(PROP_MINIMUM_RATE, "Minimum playback rate.")
    maximum_rate = _field(PROP_MAXIMUM_RATE, "Maximum playback rate.")
    shuffle = _field(PROP_SHUFFLE, "Whether playback is shuffled.")
    metadata = _field(PROP_METADATA, "The current track Metadata.")
    volume = _field(PROP_VOLUME, "Volume, 1.0 being the nominal level.")
    position = _field(PROP_POSITION, "Position in microseconds.")
    can_go_next = _field("CanGoNext", None)
    can_go_previous = _field("CanGoPrevious", None)
    can_play = _field("CanPlay", None)
    can_pause = _field("CanPause", None)
    can_seek = _field("CanSeek", None)
    can_control = _field("CanControl", None)


def decode_metadata(
    raw: Any,
) -> Tuple[Metadata, List[PartialDecodeWarning]]:
    if not isinstance(raw, Mapping):
        raise MalformedSource("metadata is not a mapping")
    fields: Dict[str, Any] = {}
    warnings: List[PartialDecodeWarning] = []
    for key, value in raw.items():
        coerce = METADATA_FIELDS.get(key)
        if coerce is None:
            continue
        try:
            fields[key] = coerce(value)
        except ValueError as e:
            if key == META_TRACKID:
                raise MalformedSource(
                    "%s is not valid: %s" % (META_TRACKID, e)
                ) from e
            warnings.append(PartialDecodeWarning(key, value, str(e)))
    return Metadata(fields), warnings


def decode_properties(
    bag: Any,
    full: bool = True,
) -> Tuple[Properties, List[PartialDecodeWarning]]:
    """
    Decode a property bag (as returned by GetAll, or as carried by a
    PropertiesChanged signal when full is False).

    Raises MalformedSource when the bag is unusable as a whole.
    """
    if not isinstance(bag, Mapping):
        raise MalformedSource(
            "expected a property mapping, got %s" % type(bag).__name__
        )
    values: Dict[str, Any] = {}
    warnings: List[PartialDecodeWarning] = []
    for key, raw in bag.items():
        if key == PROP_METADATA:
            try:
                values[key], metadata_warnings = decode_metadata(raw)
                warnings.extend(metadata_warnings)
            except MalformedSource as e:
                if full:
                    raise
                warnings.append(PartialDecodeWarning(key, raw, str(e)))
            continue
        coerce = PROPERTY_FIELDS.get(key)
        if coerce is None:
            continue
        try:
            values[key] = coerce(raw)
        except ValueError as e:
            warnings.append(PartialDecodeWarning(key, raw, str(e)))
    if full:
        for key in REQUIRED_PROPS:
            if key not in values:
                raise MalformedSource(
                    "required property %s is missing or invalid" % key
                )
    return Properties(values), warnings


def log_warnings(
    identity: str,
    warnings: List[PartialDecodeWarning],
) -> None:
    for w in warnings:
        _LOGGER.warning("%s: ignoring property %s", identity, w)
