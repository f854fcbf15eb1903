class KatanaAprError(Exception):
    pass


class CollaboratorUnavailable(KatanaAprError):
    """An upstream data source (registry, campaign provider, RPC) could not be reached or returned garbage."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class PersistenceFailure(KatanaAprError):
    pass
