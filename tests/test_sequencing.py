"""Await sequencing of async integration calls."""

from varflow import find_call_sites, sequence_awaits
from varflow.sequencing import invoked_namespaces

ASYNC = {"Sheets.get", "Dice.roll", "setValue"}


class TestCallSites:
    def test_dotted_and_bare_calls(self):
        sites = find_call_sites("max(1, Sheets.get('A1'))")
        assert [s.name for s in sites] == ["max", "Sheets.get"]

    def test_member_of_chain_not_reported_twice(self):
        sites = find_call_sites("a.b.c(1)")
        assert [s.name for s in sites] == ["a.b.c"]

    def test_span_covers_call(self):
        text = "1 + Dice.roll('1d6') * 2"
        (site,) = find_call_sites(text)
        assert text[site.start : site.end] == "Dice.roll('1d6')"

    def test_awaited_flag(self):
        (site,) = find_call_sites("await Dice.roll('1d6')")
        assert site.awaited

    def test_unlexable_text(self):
        assert find_call_sites("a # b") == []


class TestSequenceAwaits:
    def test_wraps_async_call(self):
        assert sequence_awaits("Sheets.get('B2') + 1", ASYNC) == "(await Sheets.get('B2')) + 1"

    def test_sync_calls_untouched(self):
        assert sequence_awaits("Local.value('k') + 1", ASYNC) == "Local.value('k') + 1"

    def test_already_awaited_not_double_wrapped(self):
        text = "(await Sheets.get('k')) + 1"
        assert sequence_awaits(text, ASYNC) == text

    def test_nested_calls(self):
        result = sequence_awaits("Sheets.get(Dice.roll('1d4'))", ASYNC)
        assert result == "(await Sheets.get((await Dice.roll('1d4'))))"

    def test_calls_inside_strings_ignored(self):
        text = "'Sheets.get(1)' + Dice.roll('Sheets.get(2)')"
        assert sequence_awaits(text, ASYNC) == "'Sheets.get(1)' + (await Dice.roll('Sheets.get(2)'))"

    def test_order_preserved(self):
        result = sequence_awaits("Dice.roll('a') + Dice.roll('b')", ASYNC)
        assert result == "(await Dice.roll('a')) + (await Dice.roll('b'))"

    def test_bare_primitive(self):
        result = sequence_awaits('setValue("hp", 3)', ASYNC)
        assert result == '(await setValue("hp", 3))'

    def test_no_async_operations(self):
        assert sequence_awaits("Sheets.get(1)", set()) == "Sheets.get(1)"


class TestInvokedNamespaces:
    def test_only_known_namespaces(self):
        text = "Dice.roll('1d6') + Math.floor(2) + other(1)"
        assert invoked_namespaces(text, {"Dice", "Local"}) == {"Dice"}

    def test_member_access_without_call(self):
        assert invoked_namespaces("Dice.last", {"Dice"}) == set()
