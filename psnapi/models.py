"""
models.py
=========
Typed shapes for the JSON bodies returned by the PSN endpoints.

Every model has a ``from_dict`` classmethod.  Missing keys decode to empty
values, the way the upstream service omits fields it has nothing for;
values of the wrong JSON type raise ``TypeError`` / ``ValueError``, which the
session turns into :class:`~psnapi.errors.MalformedResponseError`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------

def _obj(data: Any, key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"'{key}' must be an object")
    return value


def _list(data: Any, key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"'{key}' must be an array")
    return value


def _str(data: Any, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise TypeError(f"'{key}' must be a string")
    return value


def _int(data: Any, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{key}' must be an integer")
    return value


def _bool(data: Any, key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise TypeError(f"'{key}' must be a boolean")
    return value


def _datetime(data: Any, key: str) -> Optional[datetime]:
    value = _str(data, key)
    if not value:
        return None
    return datetime.fromisoformat(value)


_DURATION_RE = re.compile(
    r'^P(?:(?P<days>\d+)D)?'
    r'(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$'
)


def parse_duration(value: str) -> Optional[timedelta]:
    """Parse an ISO 8601 duration such as ``PT228H56M33S``.

    Returns ``None`` for an empty string.

    Raises:
        ValueError: *value* is not a day/time duration.
    """
    if not value:
        return None
    match = _DURATION_RE.match(value)
    if not match or value in ('P', 'PT') or value.endswith('T'):
        raise ValueError(f"invalid duration: {value!r}")
    parts = {k: float(v) for k, v in match.groupdict().items() if v}
    return timedelta(**parts)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

@dataclass
class ErrorEnvelope:
    reason: str = ''
    source: str = ''
    code: int = 0
    message: str = ''
    reference_id: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ErrorEnvelope':
        error = _obj(data, 'error')
        return cls(
            reason=_str(error, 'reason'),
            source=_str(error, 'source'),
            code=_int(error, 'code'),
            message=_str(error, 'message'),
            reference_id=_str(error, 'referenceId'),
        )


# ---------------------------------------------------------------------------
# Account lookup
# ---------------------------------------------------------------------------

@dataclass
class UserAccount:
    online_id: str = ''
    account_id: str = ''
    current_online_id: str = ''


@dataclass
class UserAccountResponse:
    profile: UserAccount = field(default_factory=UserAccount)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserAccountResponse':
        profile = _obj(data, 'profile')
        return cls(profile=UserAccount(
            online_id=_str(profile, 'onlineId'),
            account_id=_str(profile, 'accountId'),
            current_online_id=_str(profile, 'currentOnlineId'),
        ))


# ---------------------------------------------------------------------------
# Profile lookup
# ---------------------------------------------------------------------------

@dataclass
class Picture:
    size: str = ''
    url: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Picture':
        return cls(size=_str(data, 'size'), url=_str(data, 'url'))


@dataclass
class PersonalDetail:
    first_name: str = ''
    last_name: str = ''
    display_name: str = ''
    profile_pictures: List[Picture] = field(default_factory=list)


@dataclass
class UserProfileResponse:
    online_id: str = ''
    personal_detail: PersonalDetail = field(default_factory=PersonalDetail)
    about_me: str = ''
    avatars: List[Picture] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    is_plus: bool = False
    is_officially_verified: bool = False
    is_me: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfileResponse':
        detail = _obj(data, 'personalDetail')
        return cls(
            online_id=_str(data, 'onlineId'),
            personal_detail=PersonalDetail(
                first_name=_str(detail, 'firstName'),
                last_name=_str(detail, 'lastName'),
                display_name=_str(detail, 'displayName'),
                profile_pictures=[Picture.from_dict(p) for p in _list(detail, 'profilePictures')],
            ),
            about_me=_str(data, 'aboutMe'),
            avatars=[Picture.from_dict(a) for a in _list(data, 'avatars')],
            languages=[str(lang) for lang in _list(data, 'languages')],
            is_plus=_bool(data, 'isPlus'),
            is_officially_verified=_bool(data, 'isOfficiallyVerified'),
            is_me=_bool(data, 'isMe'),
        )


# ---------------------------------------------------------------------------
# Game library
# ---------------------------------------------------------------------------

@dataclass
class MediaImage:
    url: str = ''
    format: str = ''
    type: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MediaImage':
        return cls(url=_str(data, 'url'), format=_str(data, 'format'), type=_str(data, 'type'))


@dataclass
class Media:
    audios: List[Any] = field(default_factory=list)
    videos: List[Any] = field(default_factory=list)
    images: List[MediaImage] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Media':
        return cls(
            audios=_list(data, 'audios'),
            videos=_list(data, 'videos'),
            images=[MediaImage.from_dict(i) for i in _list(data, 'images')],
        )


@dataclass
class LocalizedName:
    """Concept name per locale; ``metadata`` maps tags such as ``'en-US'`` to names."""

    default_language: str = ''
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LocalizedName':
        metadata = _obj(data, 'metadata')
        return cls(
            default_language=_str(data, 'defaultLanguage'),
            metadata={tag: _str(metadata, tag) for tag in metadata},
        )

    def get(self, language: str, default: str = '') -> str:
        return self.metadata.get(language) or default


@dataclass
class Concept:
    id: int = 0
    title_ids: List[str] = field(default_factory=list)
    name: str = ''
    media: Media = field(default_factory=Media)
    genres: List[str] = field(default_factory=list)
    localized_name: LocalizedName = field(default_factory=LocalizedName)
    country: str = ''
    language: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Concept':
        return cls(
            id=_int(data, 'id'),
            title_ids=[str(t) for t in _list(data, 'titleIds')],
            name=_str(data, 'name'),
            media=Media.from_dict(_obj(data, 'media')),
            genres=[str(g) for g in _list(data, 'genres')],
            localized_name=LocalizedName.from_dict(_obj(data, 'localizedName')),
            country=_str(data, 'country'),
            language=_str(data, 'language'),
        )


@dataclass
class GameTitle:
    title_id: str = ''
    name: str = ''
    localized_name: str = ''
    image_url: str = ''
    localized_image_url: str = ''
    category: str = ''
    service: str = ''
    play_count: int = 0
    concept: Concept = field(default_factory=Concept)
    media: Media = field(default_factory=Media)
    first_played_date_time: Optional[datetime] = None
    last_played_date_time: Optional[datetime] = None
    play_duration: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GameTitle':
        return cls(
            title_id=_str(data, 'titleId'),
            name=_str(data, 'name'),
            localized_name=_str(data, 'localizedName'),
            image_url=_str(data, 'imageUrl'),
            localized_image_url=_str(data, 'localizedImageUrl'),
            category=_str(data, 'category'),
            service=_str(data, 'service'),
            play_count=_int(data, 'playCount'),
            concept=Concept.from_dict(_obj(data, 'concept')),
            media=Media.from_dict(_obj(data, 'media')),
            first_played_date_time=_datetime(data, 'firstPlayedDateTime'),
            last_played_date_time=_datetime(data, 'lastPlayedDateTime'),
            play_duration=_str(data, 'playDuration'),
        )

    @property
    def play_duration_delta(self) -> Optional[timedelta]:
        """``play_duration`` as a :class:`timedelta` (``None`` when absent)."""
        return parse_duration(self.play_duration)


@dataclass
class UserGamesResponse:
    titles: List[GameTitle] = field(default_factory=list)
    next_offset: int = 0
    previous_offset: int = 0
    total_item_count: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserGamesResponse':
        return cls(
            titles=[GameTitle.from_dict(t) for t in _list(data, 'titles')],
            next_offset=_int(data, 'nextOffset'),
            previous_offset=_int(data, 'previousOffset'),
            total_item_count=_int(data, 'totalItemCount'),
        )
