"""Exceptions raised by the save-sent pipeline."""

from __future__ import annotations


class SaveSentError(Exception):
    """Base class for every save-sent failure."""


class StoreUnavailableError(SaveSentError):
    """The token store could not be reached or answered with an error."""


class DeliveryError(SaveSentError):
    """Handing a duplicate to the outbound transport failed."""


class DuplicateLoopError(SaveSentError):
    """A message that already carries the duplicate marker was about to be duplicated."""
