class ValidationError(Exception):
    """Input failed one or more field rules.

    ``errors`` maps each offending field to a human readable message so the
    dashboard can attach the message to the right form control.
    """

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = {'input': errors}
        self.errors = dict(errors)
        super().__init__('; '.join(f"{field}: {message}" for field, message in self.errors.items()))

    @property
    def fields(self):
        return sorted(self.errors)


class ResourceNotFoundError(Exception):
    def __init__(self, message, field=None):
        self.field = field
        super().__init__(message)


class DatabaseError(Exception):
    def __init__(self, message, field=None):
        self.field = field
        super().__init__(message)


class DuplicateKeyError(DatabaseError):
    pass


class ForeignKeyViolationError(DatabaseError):
    pass
