"""
Per-attempt question presentation.

A materialization is two permutations chosen once when an attempt starts and
stored with it: the order of questions and, per presented question, the order
of its options. Students answer in presented coordinates; the service keeps
answers in canonical (original) coordinates so grading never depends on the
shuffle.
"""
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional


class AnswerMappingError(ValueError):
    pass


@dataclass(frozen=True)
class Materialization:
    question_order: List[int]
    option_orders: List[List[int]]

    @classmethod
    def from_attempt(cls, attempt) -> "Materialization":
        return cls(list(attempt.question_order), [list(o) for o in attempt.option_orders])


def materialize(questions: List[Mapping[str, Any]], shuffle_questions: bool,
                shuffle_options: bool, rng: Optional[random.Random] = None) -> Materialization:
    rng = rng or random.SystemRandom()

    question_order = list(range(len(questions)))
    if shuffle_questions:
        rng.shuffle(question_order)

    option_orders = []
    for original_index in question_order:
        order = list(range(len(questions[original_index]["options"])))
        if shuffle_options:
            rng.shuffle(order)
        option_orders.append(order)

    return Materialization(question_order, option_orders)


def present_questions(questions: List[Mapping[str, Any]], materialization: Materialization) -> List[Dict[str, Any]]:
    """Questions in presented order with answer keys stripped."""
    presented = []
    for position, original_index in enumerate(materialization.question_order):
        question = questions[original_index]
        options = question["options"]
        presented.append({
            "index": position,
            "question": question["question"],
            "options": [options[i] for i in materialization.option_orders[position]],
            "marks": question.get("marks", 0),
        })
    return presented


def normalize_answer_keys(answers: Optional[Mapping[Any, Any]]) -> Dict[int, int]:
    """JSON round-trips turn integer keys into strings; undo that."""
    return {int(k): int(v) for k, v in (answers or {}).items() if v is not None}


def to_canonical(materialization: Materialization, presented_answers: Mapping[int, int]) -> Dict[int, int]:
    canonical = {}
    for position, option in presented_answers.items():
        if not 0 <= position < len(materialization.question_order):
            raise AnswerMappingError(f"Question {position} does not exist")
        option_order = materialization.option_orders[position]
        if not 0 <= option < len(option_order):
            raise AnswerMappingError(f"Option {option} does not exist for question {position}")
        canonical[materialization.question_order[position]] = option_order[option]
    return canonical


def to_presented(materialization: Materialization, canonical_answers: Mapping[int, int]) -> Dict[int, int]:
    position_of = {original: position for position, original in enumerate(materialization.question_order)}
    presented = {}
    for original_question, original_option in canonical_answers.items():
        position = position_of.get(original_question)
        if position is None:
            continue
        presented[position] = materialization.option_orders[position].index(original_option)
    return presented


def present_review(questions: List[Mapping[str, Any]], materialization: Materialization,
                   canonical_answers: Mapping[int, int]) -> List[Dict[str, Any]]:
    """Per-question result in the order and option layout the student saw."""
    review = []
    presented_answers = to_presented(materialization, canonical_answers)
    for position, original_index in enumerate(materialization.question_order):
        question = questions[original_index]
        option_order = materialization.option_orders[position]
        correct_position = option_order.index(question["correctAnswer"])
        chosen = presented_answers.get(position)
        review.append({
            "index": position,
            "question": question["question"],
            "yourAnswer": chosen,
            "correctAnswer": correct_position,
            "isCorrect": chosen == correct_position,
        })
    return review
