import pytest

from queryrunner.models import (
    EMPTY,
    SavedQueryConfig,
    SavedQueryIdentity,
    SavedQuerySpecAndConfig,
    Subject,
)


def test_subject_string_forms():
    assert str(Subject(site=True)) == "site"
    assert str(Subject(org_id=7)) == "org:7"
    assert str(Subject(user_id=3)) == "user:3"


@pytest.mark.parametrize("kwargs", [{}, {"user_id": 1, "org_id": 2}, {"site": True, "user_id": 1}])
def test_subject_requires_exactly_one_owner(kwargs):
    with pytest.raises(ValueError):
        Subject(**kwargs)


def test_identity_cache_key_is_stable_value():
    a = SavedQueryIdentity(Subject(user_id=1), "errors")
    b = SavedQueryIdentity(Subject(user_id=1), "errors")
    assert a == b
    assert a is not b
    assert a.cache_key == b.cache_key == "user:1:errors"
    assert SavedQueryIdentity(Subject(org_id=1), "errors").cache_key != a.cache_key


def test_identity_wire_round_trip():
    wire = {"Subject": {"Site": False, "Org": None, "User": 5}, "Key": "k"}
    identity = SavedQueryIdentity.from_wire(wire)
    assert identity == SavedQueryIdentity(Subject(user_id=5), "k")
    assert identity.to_wire() == wire


def test_config_equality_ignores_unknown_fields():
    a = SavedQueryConfig.from_wire({"key": "k", "query": "q", "lastUpdated": "yesterday"})
    b = SavedQueryConfig.from_wire({"key": "k", "query": "q", "lastUpdated": "today"})
    assert a == b
    assert hash(a) == hash(b)
    assert a.extra == {"lastUpdated": "yesterday"}


def test_config_equality_covers_payload_fields():
    a = SavedQueryConfig(key="k", query="q", notify=True)
    assert a != SavedQueryConfig(key="k", query="q", notify=False)
    assert a != SavedQueryConfig(key="k", query="q2", notify=True)


def test_config_from_wire_maps_camel_case():
    config = SavedQueryConfig.from_wire({
        "key": "k", "query": "q", "description": "d", "showOnHomepage": True,
        "notify": True, "notifySlack": True, "userID": 4, "orgID": None,
    })
    assert config.show_on_homepage and config.notify and config.notify_slack
    assert config.user_id == 4
    assert config.to_wire()["notifySlack"] is True


def test_empty_placeholder():
    assert EMPTY.is_empty
    assert EMPTY.query == ""
    assert EMPTY == SavedQuerySpecAndConfig()
    with pytest.raises(ValueError):
        EMPTY.cache_key
