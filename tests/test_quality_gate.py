"""Tests for the deterministic quality gate."""

from models.enums import QualityAction, QualityDimension
from models.quality import QualityContext, QualityScores, RecentChapter


class TestDecideAction:
    def test_low_score_with_two_hard_failures_is_auto_rewrite(self, quality_thresholds):
        from quality.gate import decide_action
        assert decide_action(45, 2, quality_thresholds) == QualityAction.AUTO_REWRITE

    def test_two_hard_failures_force_rewrite_even_when_score_is_fine(self, quality_thresholds):
        from quality.gate import decide_action
        assert decide_action(80, 2, quality_thresholds) == QualityAction.AUTO_REWRITE

    def test_review_band(self, quality_thresholds):
        from quality.gate import decide_action
        assert decide_action(60, 0, quality_thresholds) == QualityAction.HUMAN_REVIEW
        assert decide_action(90, 1, quality_thresholds) == QualityAction.HUMAN_REVIEW

    def test_pass(self, quality_thresholds):
        from quality.gate import decide_action
        assert decide_action(65, 0, quality_thresholds) == QualityAction.PASS


class TestWeightedOverall:
    def test_standard_weights(self):
        from quality.gate import weighted_overall
        # continuity 30 + repetition 20 + power 20 + new info 0 + pacing 15
        assert weighted_overall(QualityScores(), extended=False) == 85

    def test_rounds_half_up(self):
        from quality.gate import weighted_overall
        scores = QualityScores(pacing=70)
        assert weighted_overall(scores, extended=False) == 81

    def test_extended_weights(self):
        from quality.gate import weighted_overall
        scores = QualityScores(new_info=100, dialogue=100, cliche=0, exposition=0)
        assert weighted_overall(scores, extended=True) == 100


class TestEvaluate:
    def test_passing_chapter(self, passing_chapter, quality_thresholds):
        from quality.gate import evaluate
        report = evaluate(passing_chapter, QualityContext(chapter_number=2), quality_thresholds)
        assert report.action == QualityAction.PASS
        assert report.overall == 100
        assert report.failures == []
        assert report.scores.new_info_count == 5

    def test_deterministic(self, passing_chapter, quality_thresholds):
        from quality.gate import evaluate
        context = QualityContext(
            chapter_number=5,
            recent_chapters=[RecentChapter(4, "The tournament began."), RecentChapter(3, "A duel.")],
            deceased_characters=["Old Wu"],
        )
        assert evaluate(passing_chapter, context, quality_thresholds) == \
            evaluate(passing_chapter, context, quality_thresholds)

    def test_empty_content_fails_outright(self, quality_thresholds):
        from quality.gate import evaluate
        for content in ("", "   \n\n  "):
            report = evaluate(content, QualityContext(), quality_thresholds)
            assert report.action == QualityAction.FAIL
            assert report.overall == 0
            assert not report.passed

    def test_dead_characters_hard_fail_continuity(self, passing_chapter, quality_thresholds):
        from quality.gate import evaluate
        context = QualityContext(chapter_number=9, deceased_characters=["Lin Feng", "keeper"])
        report = evaluate(passing_chapter, context, quality_thresholds)
        assert report.scores.continuity == 40
        assert QualityDimension.CONTINUITY in report.failures
        assert report.action != QualityAction.PASS

    def test_gate_object_uses_thresholds(self, passing_chapter):
        from config.settings import QualityThresholds
        from quality.gate import QualityGate
        strict = QualityGate(QualityThresholds(word_count_min=3000, word_count_max=4000))
        report = strict.evaluate(passing_chapter, QualityContext())
        assert report.scores.pacing == 80
        assert "Pacing issues detected" not in report.warnings

    def test_extended_mode_adds_dialogue_scores(self, passing_chapter, quality_thresholds):
        from quality.gate import evaluate
        report = evaluate(passing_chapter, QualityContext(), quality_thresholds, extended=True)
        assert report.scores.dialogue is not None
        assert report.scores.cliche is not None
        assert report.scores.exposition is not None

    def test_standard_mode_leaves_extended_scores_empty(self, passing_chapter, quality_thresholds):
        from quality.gate import evaluate
        report = evaluate(passing_chapter, QualityContext(), quality_thresholds)
        assert report.scores.dialogue is None


class TestContinuity:
    def test_each_dead_character_costs_thirty(self):
        from quality.gate import check_continuity
        score, issues = check_continuity(
            "The next day Old Wu poured tea.", QualityContext(deceased_characters=["Old Wu"]),
        )
        assert score == 70
        assert "Old Wu" in issues[0].message

    def test_whole_word_match_only(self):
        from quality.gate import check_continuity
        score, _ = check_continuity("Meanwhile the wumpus slept.", QualityContext(deceased_characters=["Wu"]))
        assert score == 100

    def test_missing_transition(self):
        from quality.gate import check_continuity
        score, issues = check_continuity("He walked home.", QualityContext())
        assert score == 90
        assert issues[0].dimension == QualityDimension.CONTINUITY


class TestRepetition:
    def test_beat_seen_in_recent_chapters(self, quality_thresholds):
        from quality.gate import check_repetition
        context = QualityContext(chapter_number=10, recent_chapters=[
            RecentChapter(9, "The tournament drew a crowd."),
            RecentChapter(8, "He won the duel easily."),
            RecentChapter(7, "Quiet day."),
        ])
        score, issues = check_repetition("Another tournament was announced.", context, quality_thresholds)
        assert score == 15
        assert "tournament" in issues[0].message

    def test_beats_outside_window_ignored(self, quality_thresholds):
        from quality.gate import check_repetition
        context = QualityContext(chapter_number=30, recent_chapters=[
            RecentChapter(2, "The tournament drew a crowd."),
            RecentChapter(3, "The tournament drew a crowd."),
        ])
        score, _ = check_repetition("Another tournament was announced.", context, quality_thresholds)
        assert score == 0

    def test_copied_sentence(self, quality_thresholds):
        from quality.gate import check_repetition
        sentence = "The wind howled across the frozen peaks of the northern range."
        context = QualityContext(chapter_number=4, recent_chapters=[RecentChapter(3, f"Earlier. {sentence} Then.")])
        score, issues = check_repetition(sentence, context, quality_thresholds)
        assert score == 15
        assert issues[0].message.startswith("Repeated phrase")

    def test_hard_fail_above_thirty(self, quality_thresholds):
        from quality.gate import evaluate
        old = "The tournament and the auction and the secret realm."
        context = QualityContext(chapter_number=3, recent_chapters=[RecentChapter(1, old), RecentChapter(2, old)])
        report = evaluate(
            "The next day a tournament, an auction and a secret realm opened.", context, quality_thresholds,
        )
        assert report.scores.repetition == 45
        assert QualityDimension.REPETITION in report.failures


class TestPowerSanity:
    def test_breakthrough_without_buildup(self, quality_thresholds):
        from quality.gate import check_power_sanity
        score, issues = check_power_sanity("He broke through.", QualityContext(), quality_thresholds)
        assert score == 80
        assert issues[0].dimension == QualityDimension.POWER

    def test_breakthrough_with_buildup(self, quality_thresholds):
        from quality.gate import check_power_sanity
        score, _ = check_power_sanity(
            "After months of painstaking training he broke through.", QualityContext(), quality_thresholds,
        )
        assert score == 100

    def test_realm_jump_this_arc(self, quality_thresholds):
        from quality.gate import check_power_sanity
        context = QualityContext(realm_index=5, arc_start_realm_index=1)
        score, issues = check_power_sanity("He broke through.", context, quality_thresholds)
        assert score == 40
        assert "4 realms" in issues[0].message

    def test_effortless_gain(self, quality_thresholds):
        from quality.gate import check_power_sanity
        score, _ = check_power_sanity("He suddenly gained a technique.", QualityContext(), quality_thresholds)
        assert score == 85


class TestNewInfoAndPacing:
    def test_new_info_counts_categories(self, passing_chapter, quality_thresholds):
        from quality.gate import check_new_info
        score, count, issues = check_new_info(passing_chapter, quality_thresholds)
        assert (score, count, issues) == (100, 5, [])

    def test_missing_new_info_is_a_warning(self, quality_thresholds):
        from quality.gate import evaluate
        report = evaluate("The next day he walked home in silence.", QualityContext(), quality_thresholds)
        assert report.scores.new_info_count == 0
        assert QualityDimension.NEW_INFO not in report.failures
        assert any("new info" in w for w in report.warnings)

    def test_short_undialogued_fragment(self, quality_thresholds):
        from quality.gate import check_pacing
        # short, no dialogue, short paragraph
        score, issues = check_pacing("word " * 10, quality_thresholds)
        assert score == 100 - 20 - 15 - 10
        assert len(issues) == 3

    def test_too_much_dialogue(self, quality_thresholds):
        from quality.gate import check_pacing
        content = '"' + "talk " * 60 + '"'
        score, issues = check_pacing(content, quality_thresholds)
        assert score == 85
        assert "Too much dialogue" in issues[0].message
