import pytest

from alarm_engine.stores import (
    SCHEMA_DDL,
    DeviceDirectory,
    EventStore,
    RuleStore,
    client_phone_numbers,
    ensure_schema,
    row_to_reaction,
)
from factories import (
    FakeConn,
    FakePool,
    T0,
    at,
    fake_device_row,
    fake_event_row,
    fake_reaction_row,
    fake_rule_row,
    make_rule,
)

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


async def test_find_active_rules_attaches_reactions():
    conn = FakeConn()
    conn.fetch_results = [
        [fake_rule_row(), fake_rule_row({"id": "rule-2", "device_id": None, "name": "Global"})],
        [
            fake_reaction_row(),
            fake_reaction_row({"id": "reaction-2", "reaction_type": "email", "reaction_config": {"emails": ["a@b.c"]}}),
        ],
    ]

    rules = await RuleStore(FakePool(conn)).find_active_rules("device-1")

    assert [r.id for r in rules] == ["rule-1", "rule-2"]
    assert [r.reaction_type for r in rules[0].reactions] == ["sms", "email"]
    assert rules[0].reactions[1].reaction_config == {"emails": ["a@b.c"]}
    assert rules[1].reactions == []
    assert rules[1].is_global is True
    rule_query, rule_args = conn.fetch_calls[0]
    assert "device_id IS NULL" in rule_query
    assert rule_args == ("device-1",)
    assert conn.fetch_calls[1][1] == (["rule-1", "rule-2"],)


async def test_find_active_rules_without_rules_skips_reaction_query():
    conn = FakeConn()
    assert await RuleStore(FakePool(conn)).find_active_rules("device-1") == []
    assert len(conn.fetch_calls) == 1


async def test_find_rule_returns_none_for_unknown_id():
    conn = FakeConn()
    assert await RuleStore(FakePool(conn)).find_rule("missing") is None


async def test_find_rule_includes_disabled_reactions():
    conn = FakeConn()
    conn.fetchrow_results = [fake_rule_row({"enabled": False})]
    conn.fetch_results = [[fake_reaction_row({"enabled": False})]]

    rule = await RuleStore(FakePool(conn)).find_rule("rule-1")

    assert rule.enabled is False
    assert rule.reactions[0].enabled is False


async def test_find_open_event_queries_window():
    conn = FakeConn()
    conn.fetchrow_results = [fake_event_row()]

    event = await EventStore(FakePool(conn)).find_open_event("rule-1", "device-1", at(-300))

    assert event.id == "event-1"
    assert event.is_open
    query, args = conn.fetchrow_calls[0]
    assert "resolved_at IS NULL" in query
    assert args == ("rule-1", "device-1", at(-300))


async def test_create_event_returns_event_with_rule():
    conn = FakeConn()
    conn.fetchrow_results = [fake_event_row({"triggered_value": 35})]
    rule = make_rule()

    event = await EventStore(FakePool(conn)).create_event(rule, "device-1", 35.0, "msg", T0)

    assert event.rule is rule
    assert event.triggered_value == 35.0
    _, args = conn.fetchrow_calls[0]
    assert args == ("rule-1", "device-1", "critical", 35.0, "msg", T0)


async def test_append_to_message_is_single_update():
    conn = FakeConn()
    await EventStore(FakePool(conn)).append_to_message("event-1", " | Command sent: reboot (c1)")
    query, args = conn.execute_calls[0]
    assert "message = message || $2" in query
    assert args == ("event-1", " | Command sent: reboot (c1)")


async def test_get_device_maps_client_contacts():
    conn = FakeConn()
    conn.fetchrow_results = [fake_device_row({"phone_number2": "+15550001", "phone_number3": " +15550003 "})]

    device = await DeviceDirectory(FakePool(conn)).get_device("device-1")

    assert device.display_name == "Boiler Room"
    assert device.client.phone_numbers == ["+15550001", "+15550003"]
    assert device.client.primary_user_email == "owner@acme.example"


async def test_get_device_without_client():
    conn = FakeConn()
    conn.fetchrow_results = [fake_device_row({"client_id": None})]
    device = await DeviceDirectory(FakePool(conn)).get_device("device-1")
    assert device.client is None


async def test_get_unknown_device_returns_none():
    assert await DeviceDirectory(FakePool(FakeConn())).get_device("ghost") is None


async def test_reaction_config_tolerates_bad_json():
    reaction = row_to_reaction(fake_reaction_row({"reaction_config": "not json"}))
    assert reaction.reaction_config == {}


async def test_client_phone_numbers_drops_blanks_and_duplicates():
    assert client_phone_numbers("+1", None, "", "+1", "+2") == ["+1", "+2"]


async def test_ensure_schema_executes_each_statement():
    conn = FakeConn()
    await ensure_schema(FakePool(conn))
    statements = [q for q, _ in conn.execute_calls]
    assert len(statements) == len([s for s in SCHEMA_DDL.split(";") if s.strip()])
    assert any("CREATE TABLE IF NOT EXISTS alarm_events" in s for s in statements)
