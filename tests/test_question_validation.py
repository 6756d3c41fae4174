"""
Tests for question normalization, typed answer-key validation and answer-position balance.

Run with:
    python3 -m pytest tests/test_question_validation.py -v
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.assessment_models import GeneratedQuestion, QuestionType
from services.question_validation import (
    answer_position_distribution,
    balance_answer_positions,
    canonical_question_type,
    is_position_concentrated,
    normalize_and_validate,
    normalize_question,
    true_false_distribution,
    validate_question,
)

OPTIONS = ["Mitochondria", "Chloroplast", "Ribosome", "Nucleus"]


def mc(text="Which organelle performs photosynthesis?", **overrides) -> GeneratedQuestion:
    data = {
        "question_text": text,
        "question_type": "multiple_choice",
        "options": list(OPTIONS),
        "correct_answer": "Chloroplast",
        "answer_key": {"options": list(OPTIONS), "correct_option": "Chloroplast"},
    }
    data.update(overrides)
    return GeneratedQuestion.from_raw(data)


def tf(text="Chlorophyll reflects green light.", answer=True, explanation="Green light is reflected, not absorbed.") -> GeneratedQuestion:
    return GeneratedQuestion.from_raw({
        "question_text": text,
        "question_type": "true_false",
        "correct_answer": answer,
        "answer_key": {"correct_answer": answer, "explanation": explanation},
    })


class TestQuestionTypes(unittest.TestCase):
    def test_aliases(self):
        self.assertEqual(canonical_question_type("Multiple Choice"), "multiple_choice")
        self.assertEqual(canonical_question_type("true/false"), "true_false")
        self.assertEqual(canonical_question_type("short-answer"), "short_answer")
        self.assertEqual(canonical_question_type("essay"), "essay")


class TestMultipleChoice(unittest.TestCase):
    def test_valid_question_gets_position(self):
        question = normalize_question(mc())
        self.assertTrue(validate_question(question))
        self.assertEqual(question.answer_key["correct_position"], "B")

    def test_letter_reference_resolves_to_option_text(self):
        question = normalize_question(mc(correct_answer="C", answer_key={"options": list(OPTIONS)}))
        self.assertEqual(question.answer_key["correct_option"], "Ribosome")
        self.assertEqual(question.correct_answer, "Ribosome")
        self.assertTrue(validate_question(question))

    def test_prefixed_and_case_insensitive_references(self):
        prefixed = normalize_question(mc(answer_key={"options": list(OPTIONS), "correct_option": "D) Nucleus"}))
        lowered = normalize_question(mc(answer_key={"options": list(OPTIONS), "correct_option": "mitochondria"}))
        self.assertEqual(prefixed.answer_key["correct_option"], "Nucleus")
        self.assertEqual(lowered.answer_key["correct_option"], "Mitochondria")

    def test_options_taken_from_top_level_field(self):
        question = normalize_question(mc(answer_key={"correct_option": "Nucleus"}))
        self.assertEqual(question.answer_key["options"], OPTIONS)
        self.assertTrue(validate_question(question))

    def test_correct_option_must_be_one_of_the_options(self):
        question = normalize_question(mc(answer_key={"options": list(OPTIONS), "correct_option": "Golgi apparatus"}))
        self.assertFalse(validate_question(question))

    def test_too_few_options_rejected(self):
        question = normalize_question(mc(options=["Yes", "No"], answer_key={"options": ["Yes", "No"], "correct_option": "Yes"}))
        self.assertFalse(validate_question(question))

    def test_normalize_does_not_mutate_input(self):
        original = mc(correct_answer="C", answer_key={"options": list(OPTIONS)})
        normalize_question(original)
        self.assertNotIn("correct_option", original.answer_key)


class TestOtherTypes(unittest.TestCase):
    def test_true_false_string_answer(self):
        question = normalize_question(tf(answer="False"))
        self.assertIs(question.answer_key["correct_answer"], False)
        self.assertTrue(validate_question(question))

    def test_true_false_needs_real_explanation(self):
        self.assertFalse(validate_question(normalize_question(tf(explanation="Yes."))))

    def test_true_false_explanation_from_question(self):
        question = GeneratedQuestion.from_raw({
            "question_text": "Plants release oxygen.",
            "question_type": "true_false",
            "answer_key": {"correct_answer": True},
            "explanation": "Oxygen is a by-product of splitting water.",
        })
        self.assertTrue(validate_question(normalize_question(question)))

    def test_short_answer_fills_defaults(self):
        question = normalize_question(GeneratedQuestion.from_raw({
            "question_text": "Name the pigment that absorbs light.",
            "question_type": "short_answer",
            "correct_answer": "Chlorophyll",
            "answer_key": {"keywords": "chlorophyll, pigment"},
        }))
        self.assertEqual(question.answer_key["acceptable_answers"], ["Chlorophyll"])
        self.assertEqual(question.answer_key["keywords"], ["chlorophyll", "pigment"])
        self.assertEqual(question.answer_key["min_score_threshold"], 0.7)
        self.assertTrue(validate_question(question))

    def test_short_answer_threshold_string(self):
        question = normalize_question(GeneratedQuestion.from_raw({
            "question_text": "Name the gas plants absorb.",
            "question_type": "short_answer",
            "answer_key": {"acceptable_answers": ["Carbon dioxide", "CO2"], "keywords": None, "min_score_threshold": "0.6"},
        }))
        self.assertEqual(question.answer_key["min_score_threshold"], 0.6)
        self.assertEqual(question.answer_key["keywords"], [])

    def test_essay_rubric_defaults_and_key_points(self):
        question = normalize_question(GeneratedQuestion.from_raw({
            "question_text": "Analyze the role of light in photosynthesis.",
            "question_type": "essay",
            "grading_rubric": "Accuracy and depth of analysis",
            "answer_key": {"key_points": ["Light reactions", "ATP production"]},
        }))
        self.assertEqual(question.answer_key["grading_criteria"], "Accuracy and depth of analysis")
        self.assertEqual(question.answer_key["rubric"], {})
        self.assertTrue(validate_question(question))

    def test_essay_without_key_points_rejected(self):
        question = normalize_question(GeneratedQuestion.from_raw({
            "question_text": "Discuss photosynthesis.",
            "question_type": "essay",
            "answer_key": {"grading_criteria": "Depth", "key_points": [], "rubric": {}},
        }))
        self.assertFalse(validate_question(question))

    def test_matching_pairs_from_mapping(self):
        question = normalize_question(GeneratedQuestion.from_raw({
            "question_text": "Match each organelle with its function.",
            "question_type": "matching",
            "correct_answer": {"Chloroplast": "Photosynthesis", "Mitochondria": "Respiration", "Ribosome": "Protein synthesis"},
            "answer_key": {"explanation": "Each organelle has one main job."},
        }))
        self.assertEqual(len(question.answer_key["pairs"]), 3)
        self.assertTrue(validate_question(question))

    def test_matching_needs_three_pairs(self):
        question = normalize_question(GeneratedQuestion.from_raw({
            "question_text": "Match.",
            "question_type": "matching",
            "answer_key": {"pairs": {"A": "1", "B": "2"}},
        }))
        self.assertFalse(validate_question(question))


class TestNormalizeAndValidate(unittest.TestCase):
    def test_filters_invalid_and_unrequested(self):
        questions = [mc(), tf(), tf(explanation="No."), GeneratedQuestion.from_raw({
            "question_text": "Discuss.",
            "question_type": "essay",
            "answer_key": {"grading_criteria": "Depth", "key_points": ["One"], "rubric": {}},
        })]
        valid = normalize_and_validate(questions, {QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE})
        self.assertEqual([q.question_type for q in valid], ["multiple_choice", "true_false"])

    def test_alias_types_count_as_requested(self):
        question = mc(question_type="MCQ")
        self.assertEqual(len(normalize_and_validate([question], ["multiple_choice"])), 1)


class TestAnswerPositions(unittest.TestCase):
    def _all_in_a(self, count=5):
        return [
            normalize_question(mc(
                text=f"Question number {i} about cells?",
                answer_key={"options": list(OPTIONS), "correct_option": "Mitochondria"},
            ))
            for i in range(count)
        ]

    def test_concentration_detected(self):
        questions = self._all_in_a()
        self.assertEqual(answer_position_distribution(questions), {"A": 5})
        self.assertTrue(is_position_concentrated(questions))

    def test_small_batches_are_not_checked(self):
        self.assertFalse(is_position_concentrated(self._all_in_a(3)))

    def test_reshuffle_keeps_answers_consistent(self):
        balanced = balance_answer_positions(self._all_in_a())
        for question in balanced:
            key = question.answer_key
            self.assertEqual(sorted(key["options"]), sorted(OPTIONS))
            self.assertEqual(key["correct_option"], "Mitochondria")
            self.assertEqual(key["options"][ord(key["correct_position"]) - ord("A")], "Mitochondria")
            self.assertEqual(question.options, key["options"])
            self.assertTrue(validate_question(question))

    def test_large_batch_is_spread_across_slots(self):
        balanced = balance_answer_positions(self._all_in_a(20))
        counts = answer_position_distribution(balanced)
        self.assertEqual(counts, {"A": 5, "B": 5, "C": 5, "D": 5})
        self.assertFalse(is_position_concentrated(balanced))

    def test_other_types_untouched_by_reshuffle(self):
        questions = self._all_in_a() + [normalize_question(tf())]
        balanced = balance_answer_positions(questions)
        self.assertIs(balanced[-1], questions[-1])

    def test_reshuffle_is_deterministic(self):
        first = [q.answer_key["options"] for q in balance_answer_positions(self._all_in_a())]
        second = [q.answer_key["options"] for q in balance_answer_positions(self._all_in_a())]
        self.assertEqual(first, second)

    def test_spread_batch_is_left_alone(self):
        questions = [normalize_question(mc(text=f"Q{i}?", answer_key={"options": list(OPTIONS), "correct_option": OPTIONS[i]})) for i in range(4)]
        self.assertIs(balance_answer_positions(questions), questions)

    def test_true_false_distribution(self):
        questions = [normalize_question(q) for q in (tf(answer=True), tf(answer=False), tf(answer=False))]
        self.assertEqual(true_false_distribution(questions), {"true": 1, "false": 2})


if __name__ == "__main__":
    unittest.main()
