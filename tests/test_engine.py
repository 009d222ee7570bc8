"""End-to-end engine tests."""

import asyncio

import pytest

from varflow import (
    Engine,
    EvaluationError,
    EventBus,
    EventType,
    Integration,
    MemoryPersistence,
    UnknownVariable,
)


def single_page(variables, **page):
    return {"pages": [{"id": "p1", "variables": variables, **page}]}


class TestScenarios:
    @pytest.mark.asyncio
    async def test_add_value_clamped(self):
        engine = Engine(single_page({"hp": {"value": 10, "min": 0, "max": 10}}))
        await engine.resolve_page("p1")
        result = await engine.run_command("p1", 'addValue("hp", 5)')
        assert result.ok
        assert result.modified == {"hp"}
        assert (await engine.page_scope("p1"))["hp"] == 10

    @pytest.mark.asyncio
    async def test_expression_chain(self):
        engine = Engine(single_page({"a": {"eval": "1+1"}, "b": {"eval": "this.a*2"}}))
        assert await engine.resolve_page("p1") == {"a": 2, "b": 4}

    @pytest.mark.asyncio
    async def test_cycle_resolves_deterministically(self):
        config = single_page({"x": {"eval": "this.y"}, "y": {"eval": "this.x"}})
        first = await Engine(config).resolve_page("p1")
        second = await Engine(config).resolve_page("p1")
        assert first == second == {"y": None, "x": None}

    @pytest.mark.asyncio
    async def test_awaited_integration(self):
        async def get(key):
            return 41

        engine = Engine(
            single_page({"v": {"eval": "(await Integration.get('k')) + 1"}}),
            integrations=[Integration("Integration", {"get": get})],
        )
        assert (await engine.resolve_page("p1"))["v"] == 42

    @pytest.mark.asyncio
    async def test_set_value_clamps(self):
        engine = Engine(single_page({"hp": {"value": 20, "min": 0, "max": 50}}))
        await engine.run_command("p1", 'setValue("hp", 999)')
        assert (await engine.page_scope("p1"))["hp"] == 50

    @pytest.mark.asyncio
    async def test_selective_propagation(self):
        engine = Engine(single_page({"a": 1, "b": {"eval": "this.a+1"}, "c": 5}))
        await engine.resolve_page("p1")
        resolved = []
        engine.events.subscribe(EventType.VARIABLE_RESOLVED, lambda e: resolved.append(e.name))

        await engine.run_command("p1", 'setValue("a", 10)')
        assert set(resolved) == {"a", "b"}
        assert await engine.page_scope("p1") == {"a": 10, "b": 11, "c": 5}


class TestScopes:
    @pytest.mark.asyncio
    async def test_global_variables_visible_to_pages(self):
        engine = Engine(
            {
                "global": {"variables": {"max_hp": 50}},
                "pages": [{"id": "p1", "variables": {"half": {"eval": "max_hp / 2"}}}],
            }
        )
        await engine.load()
        assert await engine.resolve_page("p1") == {"max_hp": 50, "half": 25}

    @pytest.mark.asyncio
    async def test_pages_resolved_lazily(self):
        engine = Engine(single_page({"a": 1}))
        assert await engine.render("p1", "a={a}") == "a=1"

    @pytest.mark.asyncio
    async def test_default_page_ids(self):
        engine = Engine({"pages": [{"variables": {}}, {"id": "named"}, {}]})
        assert engine.page_ids() == ["page-0", "named", "page-2"]


class TestCommands:
    @pytest.mark.asyncio
    async def test_failed_command_emits_event(self):
        engine = Engine(single_page({"a": 1}))
        failures = []
        engine.events.subscribe(EventType.COMMAND_FAILED, failures.append)
        result = await engine.run_command("p1", 'setValue("ghost", 1)')
        assert isinstance(result.error, UnknownVariable)
        assert failures[0].scope_id == "p1"
        assert "ghost" in failures[0].error

    @pytest.mark.asyncio
    async def test_several_commands(self):
        engine = Engine(single_page({"a": 0, "b": 0}))
        result = await engine.run_command("p1", ['setValue("a", 2)', 'setValue("b", a * 2)'])
        assert result.ok
        assert await engine.page_scope("p1") == {"a": 2, "b": 4}

    @pytest.mark.asyncio
    async def test_local_integration_propagates(self):
        engine = Engine(single_page({"gold": {"eval": "Local.value('gold', 0)"}}))
        assert (await engine.resolve_page("p1"))["gold"] == 0
        await engine.run_command("p1", "Local.set('gold', 12)")
        assert (await engine.page_scope("p1"))["gold"] == 12

    @pytest.mark.asyncio
    async def test_modified_event(self):
        bus = EventBus()
        events = []
        bus.subscribe_all(events.append)
        engine = Engine(single_page({"a": 0}), events=bus)
        await engine.run_command("p1", 'setValue("a", 1)')
        kinds = [(e.event_type, e.name) for e in events]
        assert (EventType.VARIABLE_MODIFIED, "a") in kinds


class TestPersistence:
    @pytest.mark.asyncio
    async def test_writes_persisted(self):
        persistence = MemoryPersistence()
        engine = Engine(single_page({"hp": {"eval": "10"}}), persistence=persistence)
        await engine.run_command("p1", 'setValue("hp", 3)')
        assert await persistence.load_all("p1") == {"hp": 3}

    @pytest.mark.asyncio
    async def test_persisted_values_restored_and_frozen(self):
        persistence = MemoryPersistence({"p1": {"hp": 3}})
        engine = Engine(
            single_page({"hp": {"eval": "10"}, "double": {"eval": "hp * 2"}}),
            persistence=persistence,
        )
        assert await engine.resolve_page("p1") == {"hp": 3, "double": 6}
        assert engine.store.page("p1").definitions["hp"].kind == "literal"


class TestRender:
    @pytest.mark.asyncio
    async def test_title(self):
        engine = Engine(single_page({"hp": 4, "max": 10}, title="HP {hp}/{max}"))
        assert await engine.page_title("p1") == "HP 4/10"

    @pytest.mark.asyncio
    async def test_undeclared_placeholder(self):
        engine = Engine(single_page({"hp": 4}))
        with pytest.raises(UnknownVariable):
            await engine.render("p1", "{mana}")


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_reseeds(self):
        engine = Engine(single_page({"a": 1}))
        await engine.run_command("p1", 'setValue("a", 5)')
        await engine.reload(single_page({"a": 2, "b": {"eval": "a + 1"}}))
        scope = await engine.page_scope("p1")
        assert scope == {"a": 5, "b": 6}


class FailingPersistence(MemoryPersistence):
    async def persist(self, scope_id, name, value):
        raise OSError("disk full")


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_commands_on_unresolved_page_are_serialised(self):
        slow = Integration("Slow")

        @slow.operation(is_async=True)
        async def wait():
            await asyncio.sleep(0)
            return 0

        engine = Engine(single_page({"hp": 10, "s": {"eval": "Slow.wait()"}}), integrations=[slow])
        first, second = await asyncio.gather(
            engine.run_command("p1", 'addValue("hp", -1)'),
            engine.run_command("p1", 'addValue("hp", -1)'),
        )
        assert first.ok and second.ok
        assert sorted([first.value, second.value]) == [8, 9]
        assert (await engine.page_scope("p1"))["hp"] == 8

    @pytest.mark.asyncio
    async def test_concurrent_resolve_and_command(self):
        engine = Engine(single_page({"hp": 10, "half": {"eval": "hp / 2"}}))
        await asyncio.gather(
            engine.resolve_page("p1"),
            engine.run_command("p1", 'setValue("hp", 4)'),
        )
        assert await engine.page_scope("p1") == {"hp": 4, "half": 2}


class TestFailingBackend:
    @pytest.mark.asyncio
    async def test_failure_reported_and_propagated(self):
        engine = Engine(
            single_page({"a": 1, "b": {"eval": "a + 1"}}),
            persistence=FailingPersistence(),
        )
        failures = []
        engine.events.subscribe(EventType.COMMAND_FAILED, failures.append)

        result = await engine.run_command("p1", 'setValue("a", 10)')
        assert not result.ok
        assert isinstance(result.error, EvaluationError)
        assert isinstance(result.error.__cause__, OSError)
        assert result.modified == {"a"}
        assert await engine.page_scope("p1") == {"a": 10, "b": 11}
        assert engine.store.page("p1").modified == set()
        assert "disk full" in failures[0].error


class TestFromFile:
    @pytest.mark.asyncio
    async def test_loads_yaml(self, tmp_path):
        path = tmp_path / "sheet.yaml"
        path.write_text("pages:\n  - id: p1\n    variables:\n      a: 2\n      b: {eval: 'a * 3'}\n")
        engine = Engine.from_file(path, persistence=MemoryPersistence({"p1": {"a": 5}}))
        assert engine.page_ids() == ["p1"]
        assert await engine.resolve_page("p1") == {"a": 5, "b": 15}
