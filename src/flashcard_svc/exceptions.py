class WebhookVerificationError(Exception):
    """Raised when an inbound webhook cannot be authenticated or decoded."""


class AuthenticationError(Exception):
    """Raised when a bearer credential cannot be verified."""


class FlashcardParseError(Exception):
    """Raised when generated text does not contain a usable flashcard array."""

    user_message = "Failed. Try generating a smaller set or reword your topic."
