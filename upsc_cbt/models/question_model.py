from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

OptionLabel = Literal["A", "B", "C", "D"]
OPTION_LABELS = ("A", "B", "C", "D")


def validate_option_label(label: str) -> str:
    """Reject anything that is not exactly one of A, B, C, D."""
    if label not in OPTION_LABELS:
        raise ValueError(f"option label must be one of {OPTION_LABELS}, got {label!r}")
    return label


class Question(BaseModel):
    """
    UPSC Prelims multiple-choice question.
    Immutable once loaded into a session.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Question identifier (unique within a question set)"
    )
    question_text: str = Field(
        ...,
        min_length=1,
        description="Question stem"
    )
    options: Dict[str, str] = Field(
        ...,
        description="Option text keyed by label A-D"
    )
    correct_answer: OptionLabel = Field(
        ...,
        description="Label of the correct option"
    )
    explanation: str = Field(
        "",
        description="Solution text shown after submission"
    )
    topic: str = Field(
        ...,
        min_length=1,
        description="Subject area (e.g. Polity, Geography, Economy)"
    )
    sub_topic: Optional[str] = Field(
        None,
        description="Finer syllabus heading inside the topic"
    )
    difficulty_level: Literal["easy", "medium", "hard"] = "medium"
    question_type: str = "mcq"
    source: Literal["PYQ", "mock", "custom"] = "custom"
    year: Optional[int] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("options")
    @classmethod
    def validate_options(cls, v: Dict[str, str]) -> Dict[str, str]:
        """
        Exactly four options labelled A-D, none of them blank.
        """
        if set(v) != set(OPTION_LABELS):
            raise ValueError(f"options must be labelled exactly {OPTION_LABELS}, got {sorted(v)}")
        for label, text in v.items():
            if not str(text).strip():
                raise ValueError(f"option {label} is empty")
        return {label: v[label] for label in OPTION_LABELS}

    def is_correct(self, label: Optional[str]) -> bool:
        return label is not None and label == self.correct_answer

    def option_text(self, label: str) -> str:
        return self.options[validate_option_label(label)]

    def context(self) -> Dict[str, Any]:
        """Compact description handed to the AI feedback collaborator."""
        return {
            "question": self.question_text,
            "options": self.options,
            "correct_answer": self.correct_answer,
            "topic": self.topic,
            "sub_topic": self.sub_topic,
            "difficulty": self.difficulty_level,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Question":
        """Build from a `questions` table row (option_a .. option_d columns)."""
        return cls(
            id=str(row["id"]),
            question_text=row["question_text"],
            options={label: row[f"option_{label.lower()}"] for label in OPTION_LABELS},
            correct_answer=str(row["correct_answer"]).strip().upper(),
            explanation=row.get("explanation") or "",
            topic=row.get("topic") or "General Studies",
            sub_topic=row.get("sub_topic"),
            difficulty_level=row.get("difficulty_level") or "medium",
            question_type=row.get("question_type") or "mcq",
            source=row.get("source") or "custom",
            year=row.get("year"),
            tags=list(row.get("tags") or []),
        )

    def to_row(self) -> Dict[str, Any]:
        row = {
            "id": self.id,
            "question_text": self.question_text,
            "correct_answer": self.correct_answer,
            "explanation": self.explanation,
            "topic": self.topic,
            "sub_topic": self.sub_topic,
            "difficulty_level": self.difficulty_level,
            "question_type": self.question_type,
            "source": self.source,
            "year": self.year,
            "tags": list(self.tags),
        }
        for label in OPTION_LABELS:
            row[f"option_{label.lower()}"] = self.options[label]
        return row
