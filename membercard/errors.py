"""
Error types shared by the store, the credential lifecycle and the card renderer
"""


class ValidationFailure(ValueError):
    """A write was rejected because the submitted member data is incomplete or inconsistent"""


class PersistenceFailure(RuntimeError):
    """The record store could not complete a write"""


class CredentialInvariantError(RuntimeError):
    """A member holds more than one ACTIVE credential"""

    def __init__(self, credential_ids):
        self.credential_ids = list(credential_ids)
        super().__init__(f"Multiple ACTIVE credentials: {', '.join(self.credential_ids)}")


class PhotoLoadError(IOError):
    """Member photo could not be fetched or decoded"""


class TemplateLoadError(IOError):
    """Card background template could not be loaded"""
