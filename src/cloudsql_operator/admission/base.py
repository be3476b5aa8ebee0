"""Base class for admission handlers."""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class AdmissionHandler(ABC):
    """Base class for the handlers of one kind of admitted resource.

    Handlers are registered with the webhook under their group, version and
    resource, which are matched against `request.resource` of incoming
    AdmissionReview objects.
    """

    @property
    @abstractmethod
    def group(self):
        """API group of the handled resource ("" for the core group)."""
        pass

    @property
    @abstractmethod
    def version(self):
        pass

    @property
    @abstractmethod
    def resource(self):
        """Plural name of the handled resource."""
        pass

    @property
    def gvr(self):
        return (self.group, self.version, self.resource)

    @abstractmethod
    def admit(self, request):
        """Admit the object carried by an AdmissionRequest.

        Returns the JSON Patch operations to apply to the object, which may
        be empty. Raises ValidationError (or any other exception) to deny
        the request.
        """
        pass
