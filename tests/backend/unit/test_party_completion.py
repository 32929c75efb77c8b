from dungeonqueue.backend.party_completion import complete_parties, needed_roles
from dungeonqueue.backend.roles import Role


def test_party_of_four_takes_one_individual_dps(make_entry) -> None:
    party = [
        make_entry("a", "tank", party_id="p1"),
        make_entry("b", "healer", party_id="p1"),
        make_entry("c", "dps", party_id="p1"),
        make_entry("d", "dps", party_id="p1"),
    ]
    individuals = [make_entry("e", "dps"), make_entry("f", "dps")]

    groups = complete_parties(party, individuals)

    assert len(groups) == 1
    group = groups[0]
    assert group.party_id == "p1"
    assert {entry.participant_id for entry in group.entries} == {"a", "b", "c", "d", "e"}


def test_missing_healer_is_never_filled_by_dps(make_entry) -> None:
    party = [
        make_entry("a", "tank", party_id="p1"),
        make_entry("c", "dps", party_id="p1"),
        make_entry("d", "dps", party_id="p1"),
        make_entry("e", "dps", party_id="p1"),
    ]
    individuals = [make_entry("x", "dps"), make_entry("y", "tank")]

    assert complete_parties(party, individuals) == []


def test_full_party_needs_no_individuals(make_entry) -> None:
    party = [
        make_entry("a", "guardian", party_id="p1"),
        make_entry("b", "cleric", party_id="p1"),
        make_entry("c", "mage", party_id="p1"),
        make_entry("d", "rogue", party_id="p1"),
        make_entry("e", "ranger", party_id="p1"),
    ]

    groups = complete_parties(party, [])

    assert len(groups) == 1
    assert groups[0].entries == party


def test_party_of_two_takes_three_individuals_fifo(make_entry) -> None:
    party = [make_entry("a", "tank", party_id="p1"), make_entry("b", "healer", party_id="p1")]
    individuals = [make_entry(f"d{i}", "dps") for i in range(4)]

    groups = complete_parties(party, individuals)

    assert len(groups) == 1
    assert [entry.participant_id for entry in groups[0].dps] == ["d0", "d1", "d2"]


def test_two_parties_are_never_merged(make_entry) -> None:
    party_one = [make_entry("a", "tank", party_id="p1"), make_entry("b", "healer", party_id="p1")]
    party_two = [make_entry(f"c{i}", "dps", party_id="p2") for i in range(3)]

    assert complete_parties(party_one + party_two, []) == []


def test_individuals_consumed_by_first_party_are_gone_for_second(make_entry) -> None:
    party_one = [
        make_entry("a1", "tank", party_id="p1"),
        make_entry("b1", "healer", party_id="p1"),
        make_entry("c1", "dps", party_id="p1"),
        make_entry("d1", "dps", party_id="p1"),
    ]
    party_two = [
        make_entry("a2", "tank", party_id="p2"),
        make_entry("b2", "healer", party_id="p2"),
        make_entry("c2", "dps", party_id="p2"),
        make_entry("d2", "dps", party_id="p2"),
    ]
    individuals = [make_entry("solo", "dps")]

    groups = complete_parties(party_one + party_two, individuals)

    assert [group.party_id for group in groups] == ["p1"]


def test_party_with_surplus_role_stays_queued(make_entry) -> None:
    party = [
        make_entry("a", "tank", party_id="p1"),
        make_entry("b", "paladin", party_id="p1"),
        make_entry("c", "healer", party_id="p1"),
    ]
    individuals = [make_entry(f"d{i}", "dps") for i in range(3)]

    assert complete_parties(party, individuals) == []


def test_party_with_duplicate_participant_stays_queued(make_entry) -> None:
    first = make_entry("a", "tank", party_id="p1")
    party = [first, first, make_entry("b", "healer", party_id="p1")]
    individuals = [make_entry(f"d{i}", "dps") for i in range(3)]

    assert complete_parties(party, individuals) == []


def test_needed_roles_counts_missing_slots(make_entry) -> None:
    block = [make_entry("a", "healer", party_id="p1"), make_entry("b", "dps", party_id="p1")]

    assert needed_roles(block) == {Role.TANK: 1, Role.HEALER: 0, Role.DPS: 2}
