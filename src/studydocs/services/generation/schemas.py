from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class QuizQuestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    question: str = Field(min_length=1)
    options: list[str] = Field(min_length=2)
    correct_answer: str = Field(alias="correctAnswer", min_length=1)
    explanation: str = ""

    @field_validator("options")
    @classmethod
    def _distinct_options(cls, options: list[str]) -> list[str]:
        cleaned = [option.strip() for option in options]
        if any(not option for option in cleaned):
            raise ValueError("options must not be blank")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("options must be distinct")
        return cleaned

    @model_validator(mode="after")
    def _answer_is_an_option(self) -> QuizQuestion:
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must match one of the options")
        return self


class Flashcard(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    front: str = Field(min_length=1)
    back: str = Field(min_length=1)
