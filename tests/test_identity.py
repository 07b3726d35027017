import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.errors import MalformedEntryError
from app.identity import participant_ids, performance_type_for, same_dancer


def _entry(participants, eodsa_id=None, contestant_id=None):
    return {"participant_ids": participants, "eodsa_id": eodsa_id, "contestant_id": contestant_id}


def test_same_eodsa_id_matches():
    assert same_dancer(_entry(["D1"], eodsa_id="E1"), _entry(["D2"], eodsa_id="E1"))


def test_same_contestant_id_matches_across_eodsa_ids():
    a = _entry(["D1"], eodsa_id="E1", contestant_id="C7")
    b = _entry(["D2"], eodsa_id="E2", contestant_id="C7")
    assert same_dancer(a, b)
    assert same_dancer(b, a)


def test_shared_participant_matches():
    solo = _entry(["D1"], eodsa_id="E1")
    duet = _entry(["D2", "D1"], eodsa_id="E2")
    assert same_dancer(solo, duet)


def test_eodsa_id_listed_as_participant_matches():
    own = _entry(["D1"], eodsa_id="E1")
    studio_entry = _entry(["E1", "D5"], eodsa_id="STUDIO")
    assert same_dancer(own, studio_entry)
    assert same_dancer(studio_entry, own)


def test_unrelated_and_blank_ids_do_not_match():
    a = _entry(["D1"], eodsa_id="", contestant_id=None)
    b = _entry(["D2"], eodsa_id="", contestant_id=None)
    assert not same_dancer(a, b)
    assert not same_dancer(_entry(["D1"], eodsa_id="E1"), _entry(["D2", "D3"], eodsa_id="E2"))


def test_participant_ids_accepts_json_text_and_dedupes():
    assert participant_ids({"participant_ids": '["D1", "D2"]'}) == ("D1", "D2")
    assert participant_ids({"participant_ids": [1, "1", " 2 "]}) == ("1", "2")


@pytest.mark.parametrize("raw", [None, "not json", "{}", [], ["D1", " "], [["D1"]], 42])
def test_participant_ids_rejects_malformed(raw):
    with pytest.raises(MalformedEntryError):
        participant_ids({"id": "x", "participant_ids": raw})


def test_performance_type_for_counts():
    assert [performance_type_for(n) for n in (1, 2, 3, 4, 12)] == ["Solo", "Duet", "Trio", "Group", "Group"]
    with pytest.raises(MalformedEntryError):
        performance_type_for(0)
