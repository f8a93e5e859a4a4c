import pytest

from convoy.colors import PALETTE, assign_color, color_name
from convoy.errors import DocumentDecodeError, RoomFull, RoomNotFound
from convoy.models import Participant, decode_annotation, decode_participant
from convoy.roster import RosterManager, admit, is_ghost, sort_by_leader_distance


def make_doc(pid, lat=0.0, lng=0.0, leader=False, color="#3b82f6", last_active=1_000.0, path=None):
    doc = {
        "id": pid,
        "name": pid.upper(),
        "color": color,
        "isLeader": leader,
        "lat": lat,
        "lng": lng,
        "lastActive": last_active,
    }
    if path is not None:
        doc["path"] = path
    return doc


def test_assign_color_keeps_free_request():
    assert assign_color("#F59E0B", ["#3b82f6"]) == "#f59e0b"


def test_assign_color_picks_first_free_palette_entry():
    assert assign_color(PALETTE[0], [PALETTE[0], PALETTE[1]]) == PALETTE[2]


def test_assign_color_full_palette_keeps_request():
    assert assign_color(PALETTE[4], PALETTE) == PALETTE[4]


def test_color_name_lookup():
    assert color_name("#3B82F6") == "Neon Blue"
    assert color_name("#123456") is None


def test_decode_participant_wire_names():
    p = decode_participant(make_doc("u1", leader=True, path=[{"lat": 1, "lng": 2}]))
    assert p.display_name == "U1"
    assert p.is_leader is True
    assert p.trail[0].lng == 2
    doc = p.to_document()
    assert doc["isLeader"] is True
    assert doc["lastActive"] == 1_000.0
    assert doc["path"] == [{"lat": 1.0, "lng": 2.0}]


def test_member_document_has_no_path():
    p = Participant(id="u2", display_name="Bo", color="#10B981", is_leader=False, lat=0, lng=0, last_active=1.0)
    doc = p.to_document()
    assert "path" not in doc
    assert doc["color"] == "#10b981"


@pytest.mark.parametrize(
    "doc",
    [
        {"id": "u1", "name": "A", "color": "#fff", "isLeader": True, "lat": 0, "lng": 0},  # no lastActive
        {"id": "u1", "name": "A", "color": "#fff", "isLeader": "yes", "lat": 0, "lng": 0, "lastActive": 1},
        {"id": "u1", "name": "A", "color": "#fff", "isLeader": False, "lat": 95, "lng": 0, "lastActive": 1},
        {"id": "u1", "name": "", "color": "#fff", "isLeader": False, "lat": 0, "lng": 0, "lastActive": 1},
        {
            "id": "u1", "name": "A", "color": "#fff", "isLeader": False, "lat": 0, "lng": 0, "lastActive": 1,
            "path": [{"lat": 0, "lng": 0}],
        },
        None,
    ],
)
def test_decode_participant_rejects_malformed(doc):
    with pytest.raises(DocumentDecodeError) as excinfo:
        decode_participant(doc)
    assert excinfo.value.kind == "participant"


def test_decode_annotation_requires_text():
    with pytest.raises(DocumentDecodeError) as excinfo:
        decode_annotation({"id": "a1", "lat": 0, "lng": 0, "text": "", "createdAt": 1})
    assert excinfo.value.doc_id == "a1"


def test_ghost_threshold_is_strict():
    p = decode_participant(make_doc("u1", last_active=1_000.0))
    assert is_ghost(p, now=1_299.0) is False
    assert is_ghost(p, now=1_300.0) is False
    assert is_ghost(p, now=1_301.0) is True


def test_sort_puts_leader_first_then_by_distance():
    docs = [
        make_doc("far", lng=0.5),
        make_doc("near", lng=0.1),
        make_doc("lead", leader=True),
    ]
    ordered = sort_by_leader_distance([decode_participant(d) for d in docs])
    assert [p.id for p in ordered] == ["lead", "near", "far"]


def test_sort_without_leader_keeps_snapshot_order():
    docs = [make_doc("b", lng=0.5), make_doc("a", lng=0.1)]
    ordered = sort_by_leader_distance([decode_participant(d) for d in docs])
    assert [p.id for p in ordered] == ["b", "a"]


def test_admit_rules():
    with pytest.raises(RoomNotFound):
        admit(0, [], PALETTE[0], is_host=False)
    with pytest.raises(RoomFull):
        admit(10, [], PALETTE[0], is_host=False)
    with pytest.raises(RoomFull):
        admit(10, [], PALETTE[0], is_host=True)
    assert admit(0, [], PALETTE[3], is_host=True) == PALETTE[3]
    assert admit(9, [PALETTE[0]], PALETTE[0], is_host=False) == PALETTE[1]


def test_roster_manager_skips_malformed_documents():
    roster = RosterManager(self_id="me", clock=lambda: 1_400.0)
    roster.apply_snapshot(
        [
            make_doc("lead", leader=True, last_active=1_350.0, path=[{"lat": 0, "lng": 0}, {"lat": 0, "lng": 0.001}]),
            make_doc("me", lng=0.01, last_active=1_390.0),
            make_doc("old", lng=0.02, last_active=1_000.0),
            {"id": "broken", "name": "X"},
        ]
    )
    assert [p.id for p in roster.participants] == ["lead", "me", "old"]
    assert len(roster.rejected) == 1
    assert roster.rejected[0].doc_id == "broken"

    assert roster.leader.id == "lead"
    assert len(roster.leader_trail()) == 2
    assert [p.id for p in roster.ghosts()] == ["old"]

    entries = roster.entries()
    assert [e.participant.id for e in entries] == ["lead", "me", "old"]
    assert entries[0].distance_from_leader_km == 0
    assert entries[1].is_self is True
    assert entries[2].is_ghost is True
    assert entries[1].as_dict()["name"] == "ME"


def test_roster_distance_to_missing_participant():
    roster = RosterManager()
    roster.apply_snapshot([make_doc("a", lat=0.0, lng=0.0)])
    origin = roster.get("a").position()
    assert roster.distance_to("a", origin) == 0
    assert roster.distance_to("gone", origin) is None
    roster.clear()
    assert roster.participants == []
