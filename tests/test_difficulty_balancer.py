"""
Tests for complexity scoring and point assignment.

Run with:
    python3 -m pytest tests/test_difficulty_balancer.py -v
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.assessment_models import Difficulty, GeneratedQuestion
from services.difficulty_balancer import (
    DEFAULT_EXPLANATIONS,
    DIFFICULTY_DISTRIBUTIONS,
    assign_points,
    balance_questions,
    complexity_score,
    difficulty_bucket,
)


def question(text: str, question_type: str, explanation=None) -> GeneratedQuestion:
    return GeneratedQuestion(question_text=text, question_type=question_type, explanation=explanation)


class TestComplexityScore(unittest.TestCase):
    def test_type_weights(self):
        self.assertEqual(complexity_score(question("Is the sky blue?", "true_false")), 0.5)
        self.assertEqual(complexity_score(question("Name the pigment.", "short_answer")), 2.0)

    def test_long_questions_score_higher(self):
        long_text = " ".join(["word"] * 25)
        self.assertEqual(complexity_score(question(long_text, "multiple_choice")), 1.5)

    def test_long_words_score_higher(self):
        self.assertEqual(complexity_score(question("Photosynthesis transforms electromagnetic radiation?", "multiple_choice")), 1.3)

    def test_analytical_verbs_score_higher(self):
        self.assertEqual(complexity_score(question("Analyze the cycle.", "essay")), 3.7)

    def test_inflected_verbs_are_not_analytical(self):
        plain = question("Which gas is compared with oxygen here?", "multiple_choice")
        self.assertEqual(complexity_score(plain), 1.0)
        self.assertEqual(assign_points(plain).points, 1)
        self.assertEqual(complexity_score(question("Reevaluate the data.", "essay")), 3.0)

    def test_word_length_counts_punctuation(self):
        self.assertEqual(complexity_score(question("Atoms...... why??????", "multiple_choice")), 1.3)

    def test_same_question_same_score(self):
        q = question("Compare aerobic and anaerobic respiration in detail.", "short_answer")
        self.assertEqual(complexity_score(q), complexity_score(q.model_copy()))

    def test_buckets(self):
        self.assertEqual(difficulty_bucket(0.5), "easy")
        self.assertEqual(difficulty_bucket(1.5), "medium")
        self.assertEqual(difficulty_bucket(2.5), "hard")


class TestPointAssignment(unittest.TestCase):
    def test_points_follow_buckets(self):
        self.assertEqual(assign_points(question("Is water wet?", "true_false")).points, 1)
        self.assertEqual(assign_points(question("Name the gas.", "short_answer")).points, 2)
        self.assertEqual(assign_points(question("Evaluate the experiment.", "essay")).points, 3)

    def test_missing_explanation_filled(self):
        q = assign_points(question("Is water wet?", "true_false"))
        self.assertEqual(q.explanation, DEFAULT_EXPLANATIONS["true_false"])

    def test_existing_explanation_kept(self):
        q = assign_points(question("Is water wet?", "true_false", explanation="Checks a basic fact."))
        self.assertEqual(q.explanation, "Checks a basic fact.")

    def test_balance_reports_against_target(self):
        questions = [
            question("Is water wet?", "true_false"),
            question("Name the gas.", "short_answer"),
            question("Evaluate the experiment.", "essay"),
            question("Which organelle?", "multiple_choice"),
        ]
        balanced, report = balance_questions(questions, Difficulty.HARD)
        self.assertEqual(len(balanced), 4)
        self.assertTrue(all(q.points in (1, 2, 3) for q in balanced))
        self.assertEqual(report.counts, {"easy": 2, "medium": 1, "hard": 1})
        self.assertEqual(report.actual, {"easy": 0.5, "medium": 0.25, "hard": 0.25})
        self.assertEqual(report.target, DIFFICULTY_DISTRIBUTIONS[Difficulty.HARD])

    def test_empty_batch(self):
        balanced, report = balance_questions([], Difficulty.EASY)
        self.assertEqual(balanced, [])
        self.assertEqual(report.counts, {"easy": 0, "medium": 0, "hard": 0})


if __name__ == "__main__":
    unittest.main()
