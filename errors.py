"""
Everything the object store can fail with. All of them derive from GitlingError so a caller
(the CLI, mostly) can catch the whole family in one place.
"""


class GitlingError(Exception):
    pass


class NotARepository(GitlingError):
    """The .git directory or its config file is missing."""


class UnsupportedFormatVersion(NotARepository):
    def __init__(self, version):
        super().__init__(f"Unsupported repositoryformatversion {version}")
        self.version = version


class PathIsFile(GitlingError):
    pass


class DirectoryNotEmpty(GitlingError):
    pass


class NotADirectory(GitlingError):
    pass


class NoRepositoryFound(GitlingError):
    pass


class InvalidConfigValue(GitlingError):
    """A config key holds a value the store cannot use."""


class ObjectNotFound(GitlingError):
    pass


class AmbiguousObjectName(GitlingError):
    def __init__(self, name, candidates):
        listing = "\n - ".join(candidates)
        super().__init__(f"Ambiguous reference {name}: Candidates are\n - {listing}")
        self.candidates = candidates


class CorruptStream(GitlingError):
    """zlib could not make sense of the stored bytes."""


class MalformedObject(GitlingError):
    """Bad header, bad length, or content that does not parse for its type."""


class UnsupportedType(MalformedObject):
    def __init__(self, object_type):
        super().__init__(f"Unknown type {object_type!r}")
        self.object_type = object_type
