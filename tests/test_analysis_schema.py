import pytest

from pkgsearch.exceptions import ConfigError
from pkgsearch.index.analysis import (
    ID_ANALYZER,
    ID_KEYWORD_ANALYZER,
    AnalysisDefinition,
    AnalyzerDefinition,
    TokenizerDefinition,
    analyze,
    package_analysis,
)
from pkgsearch.index.schema import iter_leaf_fields, package_index_definition, package_properties


def test_id_analyzer_splits_on_delimiters_and_lowercases() -> None:
    assert analyze("Newtonsoft.Json") == ["newtonsoft", "json"]
    assert {"foo", "bar", "baz"} <= set(analyze("Foo.Bar-Baz"))


def test_id_analyzer_splits_case_changes_and_keeps_merged_word() -> None:
    tokens = set(analyze("EntityFramework"))
    assert {"entity", "framework", "entityframework"} <= tokens


def test_id_analyzer_splits_numbers() -> None:
    assert {"log", "net"} <= set(analyze("Log4Net"))


def test_keyword_analyzer_keeps_whole_id() -> None:
    assert analyze("Newtonsoft.Json", ID_KEYWORD_ANALYZER) == ["newtonsoft.json"]


def test_analysis_settings_render_for_elasticsearch() -> None:
    settings = package_analysis().to_settings()
    assert settings["tokenizer"]["package-id-tokenizer"] == {"type": "pattern", "pattern": r"\W+"}
    words = settings["filter"]["package-id-words"]
    assert words["type"] == "word_delimiter"
    assert words["preserve_original"] is True
    assert settings["analyzer"][ID_ANALYZER] == {
        "type": "custom",
        "tokenizer": "package-id-tokenizer",
        "filter": ["package-id-words", "lowercase"],
    }
    assert settings["analyzer"][ID_KEYWORD_ANALYZER]["tokenizer"] == "keyword"


def test_validate_rejects_unknown_references_and_bad_patterns() -> None:
    missing = AnalysisDefinition(analyzers=(AnalyzerDefinition("a", "nope"),))
    with pytest.raises(ConfigError):
        missing.validate()

    bad_pattern = AnalysisDefinition(tokenizers=(TokenizerDefinition("t", "pattern", {"pattern": "("}),))
    with pytest.raises(ConfigError):
        bad_pattern.validate()

    bad_filter = AnalysisDefinition(analyzers=(AnalyzerDefinition("a", "keyword", ("missing",)),))
    with pytest.raises(ConfigError):
        bad_filter.validate()


def test_index_body_has_settings_and_strict_mappings() -> None:
    body = package_index_definition(shards=3, replicas=1).to_body()
    assert body["settings"]["number_of_shards"] == 3
    assert body["settings"]["number_of_replicas"] == 1
    mappings = body["mappings"]
    assert mappings["dynamic"] == "strict"
    props = mappings["properties"]
    assert props["id"]["analyzer"] == ID_ANALYZER
    assert props["id"]["fields"]["keyword"] == {"type": "text", "analyzer": ID_KEYWORD_ANALYZER}
    assert props["id"]["fields"]["raw"] == {"type": "keyword"}
    assert props["download_count"] == {"type": "long"}
    assert props["authors"]["type"] == "nested"
    assert props["authors"]["properties"]["name"]["fielddata"] is True
    assert props["authors"]["properties"]["name"]["fields"]["raw"] == {"type": "keyword"}
    versions = props["versions"]["properties"]
    assert versions["last_updated"] == {"type": "date"}
    assert versions["dependencies"]["type"] == "nested"
    assert set(versions["dependencies"]["properties"]) == {"name", "version", "framework"}


def test_leaf_fields_track_source_and_nested_paths() -> None:
    leaves = {leaf.path: leaf for leaf in iter_leaf_fields(package_properties())}
    assert leaves["id.keyword"].source_path == "id"
    assert leaves["id.keyword"].nested_path is None
    assert leaves["authors.name.raw"].source_path == "authors.name"
    assert leaves["authors.name.raw"].nested_path == "authors"
    assert leaves["versions.dependencies.framework"].nested_path == "versions"
    assert "authors" not in leaves
