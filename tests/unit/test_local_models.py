"""Tests for local model ranking policies."""
import pytest

from vibe_engine.core.llm.local_models import (
    DEFAULT_CATALOG,
    RANKING_POLICIES,
    LocalModelInfo,
    SizeClass,
    rank_local_models,
    select_default_model,
)


def model(id, size_mb, instruct=True, experimental=False):
    return LocalModelInfo(
        id=id,
        repo_id=f"test/{id}",
        filename=f"{id}.gguf",
        size_mb=size_mb,
        parameters_b=size_mb / 600,
        instruct=instruct,
        experimental=experimental,
    )


CATALOG = [
    model("base-300", 300, instruct=False),
    model("chat-700", 700),
    model("chat-400", 400),
    model("preview-200", 200, experimental=True),
    model("chat-3000", 3000),
    model("chat-6000", 6000),
]


def test_size_classes():
    assert model("s", 4096).size_class == SizeClass.SMALL
    assert model("m", 4097).size_class == SizeClass.MEDIUM
    assert model("l", 9000).size_class == SizeClass.LARGE


def test_smallest_prefers_small_instruct_models():
    ranked = [m.id for m in rank_local_models(CATALOG, "smallest")]
    assert ranked == ["chat-400", "chat-700", "base-300"]


def test_fastest_cap_admits_larger_downloads():
    ranked = [m.id for m in rank_local_models(CATALOG, "fastest")]
    assert ranked[0] == "chat-400"
    assert "chat-3000" not in ranked


def test_balanced_prefers_medium_class():
    catalog = CATALOG + [model("chat-4500", 4500)]
    ranked = rank_local_models(catalog, RANKING_POLICIES["balanced"].model_copy(update={"max_download_mb": 5000}))
    assert ranked[0].id == "chat-4500"


def test_quality_prefers_largest_within_cap():
    ranked = [m.id for m in rank_local_models(CATALOG, "quality")]
    assert ranked[0] == "chat-6000"
    assert ranked[1] == "chat-3000"


def test_experimental_excluded():
    assert "preview-200" not in [m.id for m in rank_local_models(CATALOG, "smallest")]


def test_falls_back_to_whole_catalog_when_nothing_fits():
    big = [model("huge-a", 20000), model("huge-b", 15000)]
    assert [m.id for m in rank_local_models(big, "smallest")] == ["huge-b", "huge-a"]


def test_ranking_is_deterministic_on_ties():
    twins = [model("b-twin", 500), model("a-twin", 500)]
    assert [m.id for m in rank_local_models(twins)] == ["a-twin", "b-twin"]


def test_unknown_policy():
    with pytest.raises(ValueError, match="Unknown ranking policy"):
        rank_local_models(CATALOG, "cheapest")


def test_configured_model_wins():
    assert select_default_model(CATALOG, configured_id="chat-6000").id == "chat-6000"


def test_unknown_configured_model_falls_back_to_ranking():
    assert select_default_model(CATALOG, configured_id="missing").id == "chat-400"


def test_empty_catalog():
    assert select_default_model([]) is None


def test_default_catalog_has_a_smallest_pick():
    assert select_default_model(DEFAULT_CATALOG).id == "qwen2.5-0.5b-instruct-q4"
