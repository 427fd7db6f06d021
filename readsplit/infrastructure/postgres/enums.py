from enum import StrEnum


class ResultKind(StrEnum):
    ROWS = "rows"
    OUTCOME = "outcome"
