"""Configuration loading tests."""

import pytest

from varflow import ConfigError, load_config, parse_config

SHEET = """
global:
  variables:
    max_hp: 50
pages:
  - id: fighter
    title: "Fighter {hp}"
    variables:
      hp: {value: 40, min: 0, max: 50}
      hp_pct: {eval: "round(this.hp / max_hp * 100)"}
      tags: [melee, tank]
  - title: Notes
"""


class TestParseConfig:
    def test_variable_kinds(self):
        config = parse_config(
            {
                "pages": [
                    {
                        "id": "p",
                        "variables": {
                            "a": 1,
                            "b": {"eval": "a + 1"},
                            "c": {"expression": "b * 2", "min": 0},
                            "d": {"value": None},
                        },
                    }
                ]
            }
        )
        defs = {d.name: d for d in config.page("p").definitions()}
        assert defs["a"].kind == "literal" and defs["a"].literal_value == 1
        assert defs["b"].kind == "expression" and defs["b"].raw_expression == "a + 1"
        assert defs["c"].raw_expression == "b * 2"
        assert defs["c"].min == 0
        assert defs["d"].kind == "literal" and defs["d"].literal_value is None

    def test_value_wins_over_eval(self):
        config = parse_config({"pages": [{"id": "p", "variables": {"a": {"value": 3, "eval": "1"}}}]})
        (definition,) = config.page("p").definitions()
        assert definition.kind == "literal"
        assert definition.literal_value == 3

    def test_numeric_eval_text(self):
        config = parse_config({"pages": [{"id": "p", "variables": {"a": {"eval": 5}}}]})
        (definition,) = config.page("p").definitions()
        assert definition.raw_expression == "5"

    def test_empty(self):
        config = parse_config(None)
        assert config.pages == []
        assert config.global_.variables == {}

    def test_null_sections(self):
        config = parse_config({"global": None, "pages": None})
        assert config.pages == []

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError, match="must be a mapping"):
            parse_config(["a"])

    def test_bad_bounds(self):
        with pytest.raises(ConfigError):
            parse_config({"pages": [{"variables": {"a": {"value": 1, "min": "low"}}}]})

    def test_duplicate_page_ids(self):
        with pytest.raises(ConfigError, match="duplicate page id"):
            parse_config({"pages": [{"id": "a"}, {"id": "a"}]})

    def test_unknown_page(self):
        with pytest.raises(ConfigError, match="unknown page"):
            parse_config({}).page("nope")


class TestLoadConfig:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "sheet.yaml"
        path.write_text(SHEET)
        config = load_config(path)
        assert [p.id for p in config.pages] == ["fighter", "page-1"]
        assert config.pages[0].title == "Fighter {hp}"
        names = [d.name for d in config.page("fighter").definitions()]
        assert names == ["hp", "hp_pct", "tags"]
        assert config.page("fighter").definitions()[2].literal_value == ["melee", "tank"]

    def test_json_file(self, tmp_path):
        path = tmp_path / "sheet.json"
        path.write_text('{"pages": [{"id": "p", "variables": {"a": {"value": 1}}}]}')
        assert load_config(path).page("p").definitions()[0].literal_value == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("pages: [unclosed")
        with pytest.raises(ConfigError, match="cannot parse"):
            load_config(path)
