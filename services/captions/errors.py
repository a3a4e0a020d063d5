class CaptionError(Exception):
    """Base class for captioning pipeline errors."""


class PermissionDenied(CaptionError):
    """The media library could not be read. Aborts the current pass."""


class ProviderUnconfigured(CaptionError):
    """The captioning provider has no credential. Aborts the current pass."""


class ProviderFailure(CaptionError):
    """Network or API error while generating a caption. Local to one image."""


class ProviderEmptyResult(CaptionError):
    """The provider answered but returned no usable text. Local to one image."""


class NotFound(CaptionError):
    """An operation referenced an image id that is not in the store."""

    def __init__(self, image_id: str):
        super().__init__(f"Image {image_id} not found")
        self.image_id = image_id


class InvalidTransition(CaptionError):
    """A status change that the image lifecycle does not allow."""


class AlreadyProcessing(CaptionError):
    """A drain is already running."""
