"""
Value types for saved queries and their owners.

Everything here is immutable: a saved query is replaced wholesale when its
configuration changes, never mutated in place.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class Subject:
    """The owner of a saved query: the site, an organization or a user."""
    site: bool = False
    org_id: Optional[int] = None
    user_id: Optional[int] = None

    def __post_init__(self):
        owners = sum([bool(self.site), self.org_id is not None, self.user_id is not None])
        if owners != 1:
            raise ValueError("subject must name exactly one of site, org or user")

    def __str__(self) -> str:
        if self.site:
            return "site"
        if self.org_id is not None:
            return f"org:{self.org_id}"
        return f"user:{self.user_id}"

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "Subject":
        return cls(
            site=bool(data.get("Site")),
            org_id=data.get("Org"),
            user_id=data.get("User"),
        )

    def to_wire(self) -> Dict[str, Any]:
        return {"Site": self.site, "Org": self.org_id, "User": self.user_id}


@dataclass(frozen=True)
class SavedQueryIdentity:
    """Composite key of one saved query: owning subject plus query key."""
    subject: Subject
    key: str

    @property
    def cache_key(self) -> str:
        return f"{self.subject}:{self.key}"

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "SavedQueryIdentity":
        return cls(subject=Subject.from_wire(data["Subject"]), key=data["Key"])

    def to_wire(self) -> Dict[str, Any]:
        return {"Subject": self.subject.to_wire(), "Key": self.key}


@dataclass(frozen=True)
class SavedQueryConfig:
    """
    Configuration payload of one saved query.

    Equality covers the payload fields only. Unrecognised wire fields are
    kept in ``extra`` for round-tripping but never make two configs differ.
    """
    key: str
    query: str
    description: str = ""
    show_on_homepage: bool = False
    notify: bool = False
    notify_slack: bool = False
    user_id: Optional[int] = None
    org_id: Optional[int] = None
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    _WIRE_FIELDS = {
        "key": "key",
        "query": "query",
        "description": "description",
        "showOnHomepage": "show_on_homepage",
        "notify": "notify",
        "notifySlack": "notify_slack",
        "userID": "user_id",
        "orgID": "org_id",
    }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "SavedQueryConfig":
        kwargs = {attr: data[name] for name, attr in cls._WIRE_FIELDS.items() if name in data}
        extra = {k: v for k, v in data.items() if k not in cls._WIRE_FIELDS}
        return cls(extra=extra, **kwargs)

    def to_wire(self) -> Dict[str, Any]:
        out = dict(self.extra)
        for name, attr in self._WIRE_FIELDS.items():
            out[name] = getattr(self, attr)
        return out


@dataclass(frozen=True)
class SavedQuerySpecAndConfig:
    """A saved query's identity paired with its configuration.

    Both fields are ``None`` only for the ``EMPTY`` placeholder, which stands
    for "absent" on one side of a change.
    """
    spec: Optional[SavedQueryIdentity] = None
    config: Optional[SavedQueryConfig] = None

    @property
    def is_empty(self) -> bool:
        return self.spec is None

    @property
    def cache_key(self) -> str:
        if self.spec is None:
            raise ValueError("empty saved query has no cache key")
        return self.spec.cache_key

    @property
    def query(self) -> str:
        return self.config.query if self.config else ""

    @property
    def description(self) -> str:
        return self.config.description if self.config else ""

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "SavedQuerySpecAndConfig":
        return cls(
            spec=SavedQueryIdentity.from_wire(data["Spec"]),
            config=SavedQueryConfig.from_wire(data["Config"]),
        )


EMPTY = SavedQuerySpecAndConfig()


SavedQueryMap = Dict[str, SavedQuerySpecAndConfig]
