"""Tests for the analysis prompt compiler."""

import random
from collections import Counter

from deeptrend.schemas.signals import VelocityScore
from deeptrend.services.pipeline_settings import CompilerSettings
from deeptrend.services.trust import TrustTier

from pipeline.prompts.analysis import (
    ANTI_NOISE_HEADING,
    KNOWLEDGE_HEADING,
    PRIORITY_RULE,
    CounselPrompt,
    GenericPrompt,
    build_research_prompt,
    compile_prompt,
    is_counsel_mode,
    select_template,
    summarize_signals,
)
from pipeline.stages.velocity_stage import HOT_TOPICS_HEADING, score_velocity


def _hot_scores():
    return score_velocity(Counter({"agents": 3}), Counter({"agents": 1}))


def _batch(make_signal):
    return [
        make_signal("r1", source="reddit", tags=["agents", "llm"], weight=10),
        make_signal("r2", source="reddit", tags=["agents", "rag"], weight=5, author_kind="agent"),
        make_signal("r3", source="reddit", tags=["gpu"], weight=1),
        make_signal("a1", source="arxiv", tags=["llm", "agents"]),
    ]


class TestModeSwitch:
    def test_raw_only_uses_generic_template(self, registry, make_signal):
        prompt = compile_prompt(_batch(make_signal), [], registry)
        assert prompt.startswith("You are a trend intelligence analyst")
        assert ANTI_NOISE_HEADING not in prompt
        assert PRIORITY_RULE not in prompt

    def test_curated_source_switches_to_counsel(self, registry, make_signal):
        batch = [*_batch(make_signal), make_signal("s1", source="simon-willison", tags=["llm"])]
        prompt = compile_prompt(batch, [], registry)
        assert prompt.startswith("You are the LLM Counsel")
        assert ANTI_NOISE_HEADING in prompt
        assert PRIORITY_RULE in prompt
        assert "### simon-willison: Simon Willison [expert]" in prompt
        assert "Angle: practical developer tools" in prompt

    def test_is_counsel_mode(self):
        assert is_counsel_mode([TrustTier.RAW, TrustTier.CROWD])
        assert not is_counsel_mode([TrustTier.RAW])
        assert not is_counsel_mode([])

    def test_select_template(self):
        assert isinstance(select_template([TrustTier.PRIMARY]), CounselPrompt)
        assert isinstance(select_template([TrustTier.RAW]), GenericPrompt)


class TestSummaries:
    def test_groups_by_primary_tag(self, registry, make_signal):
        [arxiv, reddit] = summarize_signals(_batch(make_signal), registry)
        assert (arxiv.source, reddit.source) == ("arxiv", "reddit")
        assert reddit.signal_count == 3
        agents, gpu = reddit.groups
        assert (agents.group, agents.count) == ("agents", 2)
        assert agents.author_kinds == ["agent", "human"]
        assert agents.top_tags == [("llm", 1), ("rag", 1)]
        assert agents.avg_weight == 8
        assert (gpu.group, gpu.count, gpu.top_tags) == ("gpu", 1, [])

    def test_untagged_signals_go_to_general(self, registry, make_signal):
        [summary] = summarize_signals([make_signal("x", tags=[])], registry)
        assert summary.groups[0].group == "general"

    def test_group_line_format(self, registry, make_signal):
        prompt = compile_prompt(_batch(make_signal), [], registry)
        assert "- agents (2, agent+human): Top topics: llm (1), rag (1); avg weight 8" in prompt
        assert "- gpu (1, human): Top topics: none; avg weight 1" in prompt

    def test_top_tags_limit(self, registry, make_signal):
        signal = make_signal("x", tags=["main", "a", "b", "c", "d"])
        [summary] = summarize_signals([signal], registry, top_tags=2)
        assert summary.groups[0].top_tags == [("a", 1), ("b", 1)]

    def test_raw_bodies_never_included(self, registry, make_signal):
        batch = [make_signal("x", body="SECRET BODY TEXT", title="SECRET TITLE")]
        prompt = compile_prompt(batch, [], registry)
        assert "SECRET" not in prompt


class TestSections:
    def test_hot_topics_only_when_hot(self, registry, make_signal):
        cold = [VelocityScore(topic="x", current_count=1, previous_count=1, velocity_pct=0.0, is_hot=False)]
        assert HOT_TOPICS_HEADING not in compile_prompt(_batch(make_signal), cold, registry)
        hot_prompt = compile_prompt(_batch(make_signal), _hot_scores(), registry)
        assert HOT_TOPICS_HEADING in hot_prompt
        assert '"agents" velocity +200%' in hot_prompt

    def test_knowledge_section(self, registry, make_signal):
        without = compile_prompt(_batch(make_signal), [], registry, auxiliary_knowledge="   ")
        assert KNOWLEDGE_HEADING not in without
        prompt = compile_prompt(
            _batch(make_signal), [], registry, auxiliary_knowledge="1. A model shipped."
        )
        assert KNOWLEDGE_HEADING in prompt
        assert "1. A model shipped." in prompt
        assert "llm-knowledge" in prompt

    def test_output_contract_uses_settings(self, registry, make_signal):
        settings = CompilerSettings(target_insights_min=5, target_insights_max=7, max_p0=1)
        prompt = compile_prompt(_batch(make_signal), [], registry, settings=settings)
        assert "Return 5-7 insights" in prompt
        assert "At most 1 insights may be p0" in prompt
        assert '"gap"' in prompt

    def test_empty_batch(self, registry):
        prompt = compile_prompt([], [], registry)
        assert "(no signals in this window)" in prompt
        assert prompt.startswith("You are a trend intelligence analyst")


class TestDeterminism:
    def test_same_input_same_prompt(self, registry, make_signal):
        batch = _batch(make_signal)
        assert compile_prompt(batch, _hot_scores(), registry) == compile_prompt(
            batch, _hot_scores(), registry
        )

    def test_input_order_does_not_matter(self, registry, make_signal):
        batch = [*_batch(make_signal), make_signal("t1", source="techmeme", tags=["funding"])]
        shuffled = list(batch)
        random.Random(7).shuffle(shuffled)
        assert compile_prompt(batch, [], registry) == compile_prompt(shuffled, [], registry)


def test_research_prompt():
    prompt = build_research_prompt("small language models")
    assert '"small language models"' in prompt
    assert "Return 3-8 insights." in prompt
    assert PRIORITY_RULE in prompt
