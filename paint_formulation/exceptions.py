"""Exceptions raised by the formulation engine and recipe services."""


class FormulationError(Exception):
    """Base class for every user-facing formulation failure."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(FormulationError):
    """An edit or selection was rejected; the formulation is unchanged."""


class SaveValidationError(FormulationError):
    """A recipe is not complete enough to be saved."""


class RecordNotFound(FormulationError):
    """A referenced master product or recipe does not exist."""

    status_code = 404


class PersistenceError(FormulationError):
    """The database rejected a save or load."""

    status_code = 500


class PartialSaveError(PersistenceError):
    """The base formulation was saved but the hardener was not."""

    def __init__(self, message: str, *, base_development_id: int):
        super().__init__(message)
        self.base_development_id = base_development_id
