class MutsiftError(Exception):
    pass


class NotSpecifiedError(MutsiftError):
    """
    raised when information required to complete an operation is missing from a record
    """

    pass


class InputFileError(MutsiftError):
    """
    raised when an input file is missing, unreadable or malformed
    """

    pass


class SequenceDictionaryError(InputFileError):
    """
    raised when the contigs of a call set do not agree with the reference
    """

    pass


class AssemblyFailure(MutsiftError):
    """
    raised when a local assembly graph cannot be used to extract haplotypes
    (ex. the graph is cyclic or the reference has repeated kmers)
    """

    pass


class FilterConfigurationError(MutsiftError):
    """
    raised when a filter is requested but the table or model it depends on was not given
    """

    pass
