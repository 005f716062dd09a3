"""
Translation error types.
"""


class BackendError(Exception):
    """A model backend call failed (transport, provider or configuration error)"""


class BackendResponseError(BackendError):
    """The backend answered, but the payload is not a usable subtitle list"""
