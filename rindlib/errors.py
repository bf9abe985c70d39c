################################################################################
# Exceptions
#
# Fatal to the run:     MalformedCatalog, MalformedStore, TransportError
#                       (for the index itself)
# Fatal to one source:  TransportError, ChecksumMismatch, ExtractError
# Operator mistakes:    SelectionError and friends
################################################################################


class PorkrindError(Exception):
    pass


class MalformedCatalog(PorkrindError):
    pass


class MalformedStore(PorkrindError):
    pass


class TransportError(PorkrindError):

    def __init__(self, url, reason):
        self.url = url
        self.reason = reason
        super().__init__(f'{url}: {reason}')


class ChecksumMismatch(PorkrindError):

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f'expected {expected}, got {actual}')


class ExtractError(PorkrindError):
    pass


class SelectionError(PorkrindError):

    def __init__(self, source_id, msg):
        self.source_id = source_id
        super().__init__(msg)


class UnknownSource(SelectionError):

    def __init__(self, source_id):
        super().__init__(source_id, f'Unknown source: {source_id}')


class CannotEnableObsolete(SelectionError):

    def __init__(self, source_id, reason=None):
        msg = f'Cannot enable obsolete source {source_id}'
        if reason:
            msg += f': {reason}'
        super().__init__(source_id, msg)


class MissingParameters(SelectionError):

    def __init__(self, source_id, missing):
        self.missing = list(missing)
        super().__init__(source_id, f'Source {source_id} requires parameters: {", ".join(self.missing)}')
