from dungeonqueue.backend.catalog import StaticContentCatalog
from dungeonqueue.backend.instances import (
    build_instance_document,
    build_participant_snapshot,
    placeholder_character,
)
from dungeonqueue.backend.matchmaker import form_full_groups


def _group(make_entry, party_id=None):
    entries = [
        make_entry("t", "Guardian", party_id=party_id),
        make_entry("h", "druid", party_id=party_id),
        make_entry("d1", "mage"),
        make_entry("d2", "rogue"),
        make_entry("d3", ""),
    ]
    groups, _ = form_full_groups(entries)
    return groups[0]


def test_placeholder_character_names_the_participant(make_entry) -> None:
    entry = make_entry("ghost", "cleric")

    character = placeholder_character(entry)

    assert character.is_placeholder is True
    assert character.name == "ghost"
    assert character.character_id == "char-ghost"
    assert character.current_hp == character.max_hp


def test_participant_snapshot_keeps_raw_and_normalized_role(make_entry) -> None:
    entry = make_entry("t", "Paladin")

    snapshot = build_participant_snapshot(entry, placeholder_character(entry))

    assert snapshot["rawRole"] == "Paladin"
    assert snapshot["role"] == "tank"
    assert snapshot["powerScore"] == 100
    assert snapshot["isAlive"] is True
    assert snapshot["deaths"] == 0


def test_instance_document_starts_active_at_first_stage(make_entry) -> None:
    group = _group(make_entry)
    content = StaticContentCatalog().get_content("ancient_catacombs")
    participants = [build_participant_snapshot(entry, placeholder_character(entry)) for entry in group.entries]

    document = build_instance_document("inst-1", group, content, participants)

    assert document["id"] == "inst-1"
    assert document["status"] == "active"
    assert document["currentStage"] == 0
    assert document["maxStages"] == 4
    assert document["organizerId"] == "t"
    assert document["participantIds"] == ["t", "h", "d1", "d2", "d3"]
    assert document["partyId"] is None
    assert document["eventLog"] == []
    assert document["createdAt"] == document["updatedAt"]


def test_instance_document_copies_stages(make_entry) -> None:
    group = _group(make_entry)
    content = StaticContentCatalog().get_content("ancient_catacombs")

    document = build_instance_document("inst-1", group, content, [])
    document["stages"][0]["name"] = "changed"

    assert content.stages[0]["name"] == "Entrance Hall"
