"""
Domain errors raised by the attempt services.

Every error carries a stable ``code`` (the ``type`` field of the JSON error
envelope) and the HTTP status it maps to. Admission errors are not retriable
without a change in the underlying condition; state and session errors tell
the client to stop proctoring calls for the attempt.
"""
from fastapi import status


class AttemptError(Exception):
    code = "attempt_error"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Attempt operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


# ---------- admission ----------

class Unauthorized(AttemptError):
    code = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized"


class NotEnrolled(AttemptError):
    code = "not_enrolled"
    status_code = status.HTTP_403_FORBIDDEN
    message = "You are not enrolled in the class for this exam"


class ExamNotActive(AttemptError):
    code = "exam_not_active"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Exam is not active"


class ExamNotStarted(AttemptError):
    code = "exam_not_started"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Exam has not started yet"


class ExamEnded(AttemptError):
    code = "exam_ended"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Exam has ended"


class AlreadySubmitted(AttemptError):
    code = "already_submitted"
    status_code = status.HTTP_409_CONFLICT
    message = "You have already submitted this exam"


# ---------- lookup ----------

class ExamNotFound(AttemptError):
    code = "exam_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Exam not found"


class AttemptNotFound(AttemptError):
    code = "attempt_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Exam attempt not found"


# ---------- state ----------

class NoActiveAttempt(AttemptError):
    code = "no_active_attempt"
    status_code = status.HTTP_409_CONFLICT
    message = "No active attempt found. Please start the exam first."


class InvalidState(AttemptError):
    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT
    message = "Exam not in progress"


class AttemptExpired(AttemptError):
    code = "attempt_expired"
    status_code = status.HTTP_409_CONFLICT
    message = "Time is up. The exam has been submitted."


class ResultNotAvailable(AttemptError):
    code = "result_not_available"
    status_code = status.HTTP_409_CONFLICT
    message = "Exam not submitted yet"


# ---------- session ----------

class SessionReplaced(AttemptError):
    code = "session_replaced"
    status_code = status.HTTP_409_CONFLICT
    message = "Another session is active for this exam"
