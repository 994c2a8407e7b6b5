from fastapi import status


class ExamPolicyError(ValueError):
    """A request the exam rules do not allow. Carries the HTTP status to answer with."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ExamNotAvailable(ExamPolicyError):
    status_code = status.HTTP_403_FORBIDDEN


class AttemptLimitReached(ExamPolicyError):
    status_code = status.HTTP_403_FORBIDDEN


class AttemptAlreadyInProgress(ExamPolicyError):
    status_code = status.HTTP_409_CONFLICT


class AttemptNotInProgress(ExamPolicyError):
    status_code = status.HTTP_409_CONFLICT


class StaleSubmission(ExamPolicyError):
    status_code = status.HTTP_409_CONFLICT


class InvalidExamDefinition(ExamPolicyError):
    pass


class InvalidAnswers(ExamPolicyError):
    pass


class ExamLocked(ExamPolicyError):
    pass
