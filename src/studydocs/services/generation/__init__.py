from studydocs.services.generation.flows import answer_question, generate_flashcards, generate_quiz
from studydocs.services.generation.repair import load_structured, parse_items, repair_structured_text
from studydocs.services.generation.schemas import Flashcard, QuizQuestion

__all__ = [
    "Flashcard",
    "QuizQuestion",
    "answer_question",
    "generate_flashcards",
    "generate_quiz",
    "load_structured",
    "parse_items",
    "repair_structured_text",
]
