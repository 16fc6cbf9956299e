class RaydiumDecodeError(Exception):
    """Decode-stage failure. Fatal to one pool-creation event, never to the process."""


class MalformedInstruction(RaydiumDecodeError):
    pass


class UnsupportedLayoutVariant(RaydiumDecodeError):
    pass


class IncompleteAccountData(RaydiumDecodeError):
    pass


class DerivationError(RaydiumDecodeError):
    pass


class InvalidReserves(RaydiumDecodeError):
    pass
