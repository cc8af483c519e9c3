"""
editor.py – in-memory review editor for extracted questions

Every mutator works on the question at ``current_index`` and returns True
when it changed something, False when the request was a no-op.
"""

from typing import Optional

from models import Option, Question

MIN_OPTIONS     = 2
MAX_OPTIONS     = 6
NEW_OPTION_TEXT = "New option"


class QuestionEditor:

    def __init__(self, questions: list[Question]):
        self._questions: list[Question] = [q.model_copy(deep=True) for q in questions]
        self.current_index = 0

    # ── Reading ───────────────────────────────────────────────────────────────

    @property
    def questions(self) -> list[Question]:
        return [q.model_copy(deep=True) for q in self._questions]

    @property
    def question_count(self) -> int:
        return len(self._questions)

    @property
    def current_question(self) -> Optional[Question]:
        if not self._questions:
            return None
        return self._questions[self.current_index]

    # ── Navigation ────────────────────────────────────────────────────────────

    def go_to(self, index: int) -> bool:
        if not 0 <= index < len(self._questions) or index == self.current_index:
            return False
        self.current_index = index
        return True

    def next(self) -> bool:
        return self.go_to(self.current_index + 1)

    def previous(self) -> bool:
        return self.go_to(self.current_index - 1)

    # ── Edits ─────────────────────────────────────────────────────────────────

    def _replace_current(self, **changes) -> None:
        current = self._questions[self.current_index]
        self._questions[self.current_index] = current.model_copy(update=changes)

    def set_question_text(self, text: str) -> bool:
        if self.current_question is None:
            return False
        self._replace_current(text=text)
        return True

    def set_option_text(self, option_id: str, text: str) -> bool:
        question = self.current_question
        if question is None or option_id not in question.option_ids():
            return False
        options = [
            Option(id=o.id, text=text) if o.id == option_id else o
            for o in question.options
        ]
        self._replace_current(options=options)
        return True

    def add_option(self) -> bool:
        question = self.current_question
        if question is None or len(question.options) >= MAX_OPTIONS:
            return False
        new_option = Option(id=_next_option_id(question), text=NEW_OPTION_TEXT)
        self._replace_current(options=[*question.options, new_option])
        return True

    def remove_option(self, option_id: str) -> bool:
        question = self.current_question
        if question is None or len(question.options) <= MIN_OPTIONS:
            return False
        if option_id not in question.option_ids():
            return False
        correct = question.correct_option_id
        self._replace_current(
            options=[o for o in question.options if o.id != option_id],
            correct_option_id="" if correct == option_id else correct,
        )
        return True

    def set_correct_option(self, option_id: str) -> bool:
        question = self.current_question
        if question is None or option_id not in question.option_ids():
            return False
        self._replace_current(correct_option_id=option_id)
        return True


def _next_option_id(question: Question) -> str:
    """Next letter id after the current options, skipping letters in use.

    Removing an option shortens the list, so ``a + len(options)`` alone could
    hand out a letter a remaining option still holds.
    """
    taken = set(question.option_ids())
    code = ord("a") + len(question.options)
    while chr(code) in taken:
        code += 1
    return chr(code)
