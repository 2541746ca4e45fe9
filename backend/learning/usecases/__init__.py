"""Use case layer for the Learning context.

Re-export common use cases for convenient imports in tests.
"""

from .submissions import (
    EditAnswersInput,
    EditAnswersUseCase,
    ListSpaceSubmissionsUseCase,
    ReviewSubmissionInput,
    ReviewSubmissionUseCase,
    SubmitAnswersInput,
    SubmitAnswersUseCase,
    is_locked,
)

__all__ = [
    "EditAnswersInput",
    "EditAnswersUseCase",
    "ListSpaceSubmissionsUseCase",
    "ReviewSubmissionInput",
    "ReviewSubmissionUseCase",
    "SubmitAnswersInput",
    "SubmitAnswersUseCase",
    "is_locked",
]
