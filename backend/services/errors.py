# backend/services/errors.py


class ServiceError(Exception):
    """Base class for errors the API maps to a client-facing HTTP status."""
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ConversationNotFoundError(NotFoundError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class SourceNotFoundError(NotFoundError):
    def __init__(self, source_id: str):
        super().__init__(f"Source {source_id} not found")
        self.source_id = source_id


class QuizNotFoundError(NotFoundError):
    def __init__(self, quiz_id: str):
        super().__init__("Quiz not found")
        self.quiz_id = quiz_id


class AttemptNotFoundError(NotFoundError):
    def __init__(self, attempt_id: str):
        super().__init__("Attempt not found")
        self.attempt_id = attempt_id


class QuestionNotFoundError(NotFoundError):
    def __init__(self, question_id: str):
        super().__init__("Question not found in quiz")
        self.question_id = question_id


class NoSourcesError(ServiceError):
    def __init__(self):
        super().__init__("Conversation has no sources")


class NoSourceContentError(ServiceError):
    def __init__(self):
        super().__init__("No content found in conversation sources")


class EmptySourceError(ServiceError):
    def __init__(self):
        super().__init__("Source text is empty")


class InsufficientQuestionsError(ServiceError):
    status_code = 422

    def __init__(self, got: int, needed: int):
        super().__init__(
            f"Could not generate enough valid questions (got {got}, needed {needed}). Please try again."
        )
        self.got = got
        self.needed = needed


class InvalidAnswerError(ServiceError):
    def __init__(self):
        super().__init__("Invalid selected index")


class AttemptCompletedError(ServiceError):
    def __init__(self):
        super().__init__("Attempt already completed")
