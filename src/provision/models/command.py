"""Result of a single external command invocation."""

from pydantic import BaseModel, Field


class CommandResult(BaseModel):
    """Captured result of one external command.

    Nonzero exit is an ordinary, inspectable result. ``exit_code`` is None
    when the process was terminated because of a timeout or cancellation.
    """

    command: str = Field(description="Command line as logged (secrets redacted)")
    exit_code: int | None = Field(default=None, description="Process exit code")
    stdout: str = Field(default="", description="Captured stdout")
    stderr: str = Field(default="", description="Captured stderr")
    duration: float = Field(default=0.0, description="Wall-clock seconds")
    timed_out: bool = Field(default=False, description="Killed after exceeding timeout")
    cancelled: bool = Field(default=False, description="Killed on operator interrupt")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    def stderr_tail(self, lines: int = 20) -> str:
        """Return the last ``lines`` lines of stderr (stdout if stderr is empty)."""
        text = self.stderr.strip() or self.stdout.strip()
        return "\n".join(text.splitlines()[-lines:])
