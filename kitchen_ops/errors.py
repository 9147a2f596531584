"""Domain exceptions raised by the kitchen ops modules and turned into replies by the bot."""


class KitchenOpsError(Exception):
    """Base class for expected, user-facing failures."""


class NotFoundError(KitchenOpsError):
    pass


class ValidationError(KitchenOpsError):
    pass


class AuthorizationError(KitchenOpsError):
    pass
