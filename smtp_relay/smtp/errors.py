from __future__ import annotations


class SmtpReplyError(RuntimeError):
    """A command or transaction rejected with a specific SMTP reply."""

    def __init__(self, *, code: int, enhanced: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.enhanced = enhanced
        self.message = message

    @property
    def reply(self) -> str:
        return f"{self.code} {self.enhanced} {self.message}"


def bad_sequence(message: str) -> SmtpReplyError:
    return SmtpReplyError(code=503, enhanced="5.5.1", message=message)
