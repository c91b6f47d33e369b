"""Error types raised by the timetable generator.

Only request validation fails. Zero capacity and partial coverage degrade to
an empty or reduced schedule instead of raising.
"""


class InvalidTimetableRequest(ValueError):
    """Raised when generation constraints are rejected before any allocation."""

    pass


class UnknownSubjectError(InvalidTimetableRequest):
    """Raised when requested subject ids are missing from the subject snapshot.

    Attributes:
        subject_ids: The ids that could not be resolved, in request order
    """

    def __init__(self, subject_ids: list[str]) -> None:
        self.subject_ids = subject_ids
        super().__init__(f"Unknown subject id(s): {', '.join(subject_ids)}")
